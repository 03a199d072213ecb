"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication


class MiddlewareAuthentication(BaseAuthentication):
    """
    Return the member resolved by ``FederationContextMiddleware``.

    The middleware validates the bearer token and attaches ``request.member``;
    DRF views then see that member as ``request.user``.
    """

    def authenticate(self, request):
        django_request = request._request
        member = getattr(django_request, 'member', None)
        if member is not None and member.is_authenticated:
            return (member, None)
        return None

    def authenticate_header(self, request):
        return 'Bearer'
