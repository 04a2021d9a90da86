from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

PAYMENT_GATEWAY = {
    'BASE_URL': 'https://gateway.test/v1',
    'KEY_ID': 'rzp_test_key',
    'KEY_SECRET': 'test-key-secret',
    'WEBHOOK_SECRET': 'test-webhook-secret',
    'CURRENCY': 'INR',
    'TIMEOUT': 5,
}

CHECKOUT_PAYMENT_METHODS = ['razorpay', 'cod']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
