import pytest

from ldapmapper import exceptions
from ldapmapper.classifier import ErrorClassifier
from ldapmapper.exceptions import DetailedError


@pytest.fixture
def classifier():
    return ErrorClassifier()


PASSWORD_POLICY = DetailedError(
    19, 'Constraint violation',
    '0000052D: Constraint violation - check_password_restrictions: the password does not meet the complexity criteria'
)
INCORRECT_PASSWORD = DetailedError(
    19, 'Constraint violation',
    '00000056: Constraint violation - check_password_restrictions: the old password is incorrect'
)


class TestClassify:
    def test_password_policy(self, classifier):
        exc = classifier.classify(exceptions.BindError('failed', PASSWORD_POLICY))
        assert isinstance(exc, exceptions.ConstraintViolationError)
        assert exc.caused_by_password_policy()
        assert not exc.caused_by_incorrect_password()
        assert exc.detailed_error is PASSWORD_POLICY

    def test_incorrect_password(self, classifier):
        exc = classifier.classify(exceptions.OperationalError('failed', INCORRECT_PASSWORD))
        assert isinstance(exc, exceptions.ConstraintViolationError)
        assert exc.caused_by_incorrect_password()
        assert not exc.caused_by_password_policy()

    def test_diagnostic_codes_are_case_sensitive(self, classifier):
        detailed_error = DetailedError(1, 'Operations error', '0000052d: lower case')
        assert classifier.exception_class(detailed_error) is exceptions.OperationalError

    @pytest.mark.parametrize('message, exc_class', [
        ('Already exists', exceptions.AlreadyExistsError),
        ('Insufficient access', exceptions.InsufficientAccessError),
        ('Constraint violation', exceptions.ConstraintViolationError),
        ('No such object', exceptions.NoSuchObjectError),
        ('entryAlreadyExists', exceptions.AlreadyExistsError),
    ])
    def test_messages(self, classifier, message, exc_class):
        detailed_error = DetailedError(1, message, '')
        exc = classifier.classify(exceptions.OperationalError(message, detailed_error))
        assert type(exc) is exc_class
        assert str(exc) == message
        assert exc.detailed_error is detailed_error

    @pytest.mark.parametrize('code, exc_class', [
        (19, exceptions.ConstraintViolationError),
        (32, exceptions.NoSuchObjectError),
        (50, exceptions.InsufficientAccessError),
        (68, exceptions.AlreadyExistsError),
    ])
    def test_result_codes(self, classifier, code, exc_class):
        assert classifier.exception_class(DetailedError(code, '', '')) is exc_class

    def test_unmatched_keeps_generic_type(self, classifier):
        detailed_error = DetailedError(80, 'Other', '000004DC: LdapErr: DSID-0C090A5C')
        original = exceptions.BindError('failed', detailed_error)
        exc = classifier.classify(original)
        assert exc is original
        assert exc.detailed_error.diagnostic_code == '000004DC'

    def test_no_detailed_error(self, classifier):
        original = exceptions.OperationalError('failed')
        assert classifier.classify(original) is original

    def test_classified_error_is_chained(self, classifier):
        original = exceptions.OperationalError('failed', PASSWORD_POLICY)
        exc = classifier.classify(original)
        assert exc.__cause__ is original

    def test_bind_error(self, classifier):
        exc = classifier.bind_error('failed', DetailedError(49, 'Invalid credentials', ''))
        assert type(exc) is exceptions.BindError

    def test_classified_bind_error(self, classifier):
        exc = classifier.bind_error('failed', PASSWORD_POLICY)
        assert isinstance(exc, exceptions.BindError)
        assert isinstance(exc, exceptions.ConstraintViolationError)
        assert exc.detailed_error is PASSWORD_POLICY
        assert exc.caused_by_password_policy()
        # The same class is reused for each classified failure
        assert type(classifier.bind_error('again', PASSWORD_POLICY)) is type(exc)
        # Classifying again keeps the bind error as-is
        assert classifier.classify(exc) is exc

    def test_registered_bind_error_class_is_kept(self, classifier):
        class AccountLockedError(exceptions.BindError):
            pass
        classifier.register_code('775', AccountLockedError)
        exc = classifier.bind_error('locked', DetailedError(49, 'Invalid credentials', 'data 775'))
        assert type(exc) is AccountLockedError


class TestRegister:
    def test_register_code(self, classifier):
        class AccountLockedError(exceptions.BindError):
            pass
        classifier.register_code('775', AccountLockedError)
        detailed_error = DetailedError(49, 'Invalid credentials', '80090308: LdapErr: data 775, v4563')
        assert classifier.exception_class(detailed_error) is AccountLockedError

    def test_register_message(self, classifier):
        classifier.register_message('Busy', exceptions.ConnectionError)
        assert classifier.exception_class(DetailedError(51, 'Busy', '')) is exceptions.ConnectionError

    def test_registration_is_per_classifier(self, classifier):
        classifier.register_message('Busy', exceptions.ConnectionError)
        other = ErrorClassifier()
        assert other.exception_class(DetailedError(51, 'Busy', '')) is exceptions.OperationalError


class TestLostConnection:
    @pytest.mark.parametrize('exc', [
        exceptions.ConnectionError("Can't contact LDAP server"),
        exceptions.BindError('failed', DetailedError(81, "Can't contact LDAP server", '')),
        exceptions.LDAPError('Connection reset by peer'),
    ])
    def test_lost(self, exc):
        assert ErrorClassifier.caused_by_lost_connection(exc)

    @pytest.mark.parametrize('exc', [
        exceptions.BindError('Invalid credentials', DetailedError(49, 'Invalid credentials', '')),
        ValueError('contact'),
    ])
    def test_not_lost(self, exc):
        assert not ErrorClassifier.caused_by_lost_connection(exc)


class TestDetailedError:
    def test_diagnostic_code(self):
        assert PASSWORD_POLICY.diagnostic_code == '0000052D'
        assert DetailedError(49, 'Invalid credentials', 'no code here').diagnostic_code is None
        assert DetailedError(49, 'Invalid credentials', None).diagnostic_code is None
