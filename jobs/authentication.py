import hmac

from django.conf import settings
from rest_framework import authentication, exceptions


class APIKeyAuthentication(authentication.BaseAuthentication):
    """Require `x-api-key` to equal settings.API_KEY. Missing or wrong key -> 401."""

    header = "x-api-key"

    def authenticate(self, request):
        expected = settings.API_KEY or ""
        supplied = request.headers.get(self.header) or ""
        if not expected or not supplied or not hmac.compare_digest(supplied.encode(), expected.encode()):
            raise exceptions.AuthenticationFailed("unauthorized")
        return (None, supplied)

    def authenticate_header(self, request):
        return "ApiKey"
