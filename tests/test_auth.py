import pytest

from ldapmapper import exceptions, events
from ldapmapper.auth import Guard, AuthResult
from ldapmapper.configuration import DomainConfiguration
from ldapmapper.transport import Response

from conftest import SERVER_DOWN, INVALID_CREDENTIALS


SERVICE_ACCOUNT = ('cn=admin,dc=local,dc=com', 'secret')


@pytest.fixture
def guard(transport, dispatcher):
    transport.connect('foo')
    config = DomainConfiguration({
        'hosts' : ['foo'],
        'username' : SERVICE_ACCOUNT[0],
        'password' : SERVICE_ACCOUNT[1],
    })
    return Guard(transport, config, dispatcher)


class TestAttempt:
    def test_username_required(self, guard, transport):
        with pytest.raises(exceptions.UsernameRequiredError):
            guard.attempt('', 'password')
        assert transport.binds == []

    def test_password_required(self, guard, transport):
        with pytest.raises(exceptions.PasswordRequiredError):
            guard.attempt('jdoe', '')
        assert transport.binds == []

    def test_success_rebinds_as_configured_user(self, guard, transport):
        assert guard.attempt('jdoe', 'password') is True
        assert transport.binds == [('jdoe', 'password'), SERVICE_ACCOUNT]
        assert transport.bound_as == SERVICE_ACCOUNT[0]

    def test_success_stay_bound(self, guard, transport):
        assert guard.attempt('jdoe', 'password', stay_bound = True) is True
        assert transport.binds == [('jdoe', 'password')]
        assert transport.bound_as == 'jdoe'

    def test_failure_returns_false_and_rebinds(self, guard, transport):
        transport.bind_results.append(INVALID_CREDENTIALS)
        assert guard.attempt('jdoe', 'wrong') is False
        assert transport.binds == [('jdoe', 'wrong'), SERVICE_ACCOUNT]
        assert transport.bound_as == SERVICE_ACCOUNT[0]

    def test_failure_stay_bound_does_not_rebind(self, guard, transport):
        transport.bind_results.append(INVALID_CREDENTIALS)
        assert guard.attempt('jdoe', 'wrong', stay_bound = True) is False
        assert transport.binds == [('jdoe', 'wrong')]
        assert not transport.is_bound()

    def test_failed_rebind_raises(self, guard, transport):
        transport.bind_results.extend([INVALID_CREDENTIALS, INVALID_CREDENTIALS])
        with pytest.raises(exceptions.BindError) as exc:
            guard.attempt('jdoe', 'wrong')
        assert exc.value.detailed_error.error_code == 49

    def test_lost_connection_raises(self, guard, transport):
        transport.bind_results.append(SERVER_DOWN)
        with pytest.raises(exceptions.BindError):
            guard.attempt('jdoe', 'password')
        assert transport.binds == [('jdoe', 'password')]

    def test_events(self, guard, dispatcher):
        guard.attempt('jdoe', 'password')
        assert dispatcher.names() == [
            'Attempting', 'Binding', 'Bound', 'Passed', 'Binding', 'Bound'
        ]
        assert dispatcher.dispatched[0].username == 'jdoe'
        assert dispatcher.dispatched[-1].username == SERVICE_ACCOUNT[0]

    def test_failure_events(self, guard, transport, dispatcher):
        transport.bind_results.append(INVALID_CREDENTIALS)
        guard.attempt('jdoe', 'wrong')
        assert dispatcher.names() == [
            'Attempting', 'Binding', 'Failed', 'Binding', 'Bound'
        ]
        assert isinstance(dispatcher.dispatched[2].exception, exceptions.BindError)


class TestAuthenticate:
    def test_success(self, guard):
        result = guard.authenticate('jdoe', 'password')
        assert result == AuthResult(True, 'jdoe', None)
        assert result

    def test_failure_carries_error(self, guard, transport):
        transport.bind_results.append(INVALID_CREDENTIALS)
        result = guard.authenticate('jdoe', 'wrong')
        assert not result
        assert result.authenticated is False
        assert isinstance(result.error, exceptions.BindError)
        assert result.error.detailed_error.diagnostic_code == '80090308'

    def test_password_policy(self, guard, transport):
        transport.bind_results.append(Response(
            19, '', 'Constraint violation',
            '0000052D: Constraint violation - check_password_restrictions'
        ))
        result = guard.authenticate('jdoe', 'new', stay_bound = True)
        assert isinstance(result.error, exceptions.ConstraintViolationError)
        assert isinstance(result.error, exceptions.BindError)
        assert result.error.caused_by_password_policy()


class TestBind:
    def test_bind(self, guard, transport):
        guard.bind('jdoe', 'password')
        assert transport.bound_as == 'jdoe'

    def test_anonymous_bind(self, guard, transport):
        guard.bind()
        assert transport.binds == [(None, None)]
        assert transport.is_bound()
        assert transport.bound_as is None

    def test_bind_failure_raises(self, guard, transport):
        transport.bind_results.append(INVALID_CREDENTIALS)
        with pytest.raises(exceptions.BindError) as exc:
            guard.bind('jdoe', 'wrong')
        assert exc.value.detailed_error == INVALID_CREDENTIALS.detailed_error()
        assert str(exc.value) == INVALID_CREDENTIALS.diagnostic_message

    def test_classified_failure_is_bind_error(self, guard, transport, dispatcher):
        transport.bind_results.append(Response(
            19, '', 'Constraint violation',
            '0000052D: Constraint violation - check_password_restrictions'
        ))
        with pytest.raises(exceptions.BindError) as exc:
            guard.bind('jdoe', 'new')
        assert isinstance(exc.value, exceptions.ConstraintViolationError)
        assert exc.value.caused_by_password_policy()
        assert dispatcher.dispatched[-1].exception is exc.value

    def test_bind_connection_error_raises(self, guard, transport, dispatcher):
        transport.bind_results.append(exceptions.ConnectionError("Can't contact LDAP server"))
        with pytest.raises(exceptions.ConnectionError):
            guard.bind('jdoe', 'password')
        assert isinstance(dispatcher.dispatched[-1], events.Failed)

    def test_bind_as_configured_user(self, guard, transport):
        guard.bind_as_configured_user()
        assert transport.binds == [SERVICE_ACCOUNT]

    def test_tls_is_started_once(self, guard, transport):
        transport.tls()
        guard.bind('jdoe', 'password')
        guard.bind('jdoe', 'password')
        assert transport.tls_started == 1
