"""Typed lookup criteria for orders.

Services resolve orders through one of these variants instead of building
ad-hoc ``filter(**kwargs)`` dictionaries, so every way an order can be found
is listed here.
"""
from dataclasses import dataclass

from .models import Order


class OrderFilter:
    def apply(self, queryset):
        raise NotImplementedError


@dataclass(frozen=True)
class OrderById(OrderFilter):
    order_id: object

    def apply(self, queryset):
        return queryset.filter(pk=self.order_id)


@dataclass(frozen=True)
class OrderOwnedBy(OrderFilter):
    user_id: int
    order_id: object = None

    def apply(self, queryset):
        queryset = queryset.filter(user_id=self.user_id)
        if self.order_id is not None:
            queryset = queryset.filter(pk=self.order_id)
        return queryset


@dataclass(frozen=True)
class OrderByIntent(OrderFilter):
    payment_intent_id: str

    def apply(self, queryset):
        # an empty intent id must never match orders that have none yet
        if not self.payment_intent_id:
            return queryset.none()
        return queryset.filter(payment_intent_id=self.payment_intent_id)


@dataclass(frozen=True)
class OrderByStatus(OrderFilter):
    payment_statuses: tuple = ()
    with_intent: bool = False

    def apply(self, queryset):
        if self.payment_statuses:
            queryset = queryset.filter(payment_status__in=self.payment_statuses)
        if self.with_intent:
            queryset = queryset.exclude(payment_intent_id="")
        return queryset


def find_orders(criteria: OrderFilter, queryset=None):
    return criteria.apply(Order.objects.all() if queryset is None else queryset)
