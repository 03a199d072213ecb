"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'federation-policy-tests',
        }
    }
    settings.CELERY_TASK_ALWAYS_EAGER = True
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Rule sets are cached per federation and role; start every test cold."""
    from django.core.cache import cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def federation(db):
    """Create a test federation (default role rules are seeded on creation)."""
    from apps.federations.models import Federation
    return Federation.objects.create(
        name='Test Family',
        slug='test-family',
        status='active'
    )


@pytest.fixture
def other_federation(db):
    """Create another federation for isolation tests."""
    from apps.federations.models import Federation
    return Federation.objects.create(
        name='Other Family',
        slug='other-family',
        status='active'
    )


@pytest.fixture
def make_member(db):
    """Factory for members of a federation."""
    from apps.federations.models import Member

    counter = {'n': 0}

    def _make_member(federation, role, **kwargs):
        counter['n'] += 1
        kwargs.setdefault('duid', f"{role}-{federation.slug}-{counter['n']}")
        kwargs.setdefault('display_name', f"{role.title()} {counter['n']}")
        return Member.objects.create(federation=federation, role=role, **kwargs)

    return _make_member


@pytest.fixture
def guardian(federation, make_member):
    return make_member(federation, 'guardian')


@pytest.fixture
def steward(federation, make_member):
    return make_member(federation, 'steward')


@pytest.fixture
def second_steward(federation, make_member):
    return make_member(federation, 'steward')


@pytest.fixture
def adult(federation, make_member):
    return make_member(federation, 'adult')


@pytest.fixture
def offspring(federation, make_member):
    return make_member(federation, 'offspring')


@pytest.fixture
def private_member(federation, make_member):
    return make_member(federation, 'private')


@pytest.fixture
def outsider(other_federation, make_member):
    """Guardian of a different federation."""
    return make_member(other_federation, 'guardian')


@pytest.fixture
def member_token():
    """Return a function that mints a bearer token for a member."""
    from apps.federations.services import MemberTokenService
    return MemberTokenService.generate_token


@pytest.fixture
def auth_client(api_client, member_token):
    """Return a function that authenticates the API client as a member."""
    def _auth_client(member):
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {member_token(member)}')
        return api_client
    return _auth_client
