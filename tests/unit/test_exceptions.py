"""Tests for custom exceptions."""

from authgate.errors import (
    ATTESTATION_UNAVAILABLE,
    NO_ENROLLED_FACTOR,
    WIDGET_UNAVAILABLE,
    ErrorKind,
    Operation,
)
from authgate.exceptions import (
    ActionInProgressError,
    AuthError,
    AuthgateError,
    NoEnrolledFactorError,
    NotReadyError,
    ProviderError,
    ResolverMisuseError,
    WidgetUnavailableError,
)


class TestExceptionHierarchy:
    """Tests for exception class hierarchy."""

    def test_all_inherit_from_base(self):
        for exc_type in (
            ProviderError,
            AuthError,
            NotReadyError,
            WidgetUnavailableError,
            NoEnrolledFactorError,
            ResolverMisuseError,
            ActionInProgressError,
        ):
            assert issubclass(exc_type, AuthgateError)

    def test_widget_unavailable_is_not_ready(self):
        assert issubclass(WidgetUnavailableError, NotReadyError)
        assert issubclass(NotReadyError, AuthError)

    def test_misuse_is_not_a_classified_error(self):
        assert not issubclass(ResolverMisuseError, AuthError)


class TestProviderError:
    def test_message_includes_code(self):
        exc = ProviderError("auth/wrong-password", "INVALID_PASSWORD")
        assert str(exc) == "auth/wrong-password: INVALID_PASSWORD"
        assert exc.payload == {}

    def test_code_only(self):
        assert str(ProviderError("auth/internal-error")) == "auth/internal-error"


class TestFromCode:
    """AuthError.from_code picks the most specific subclass."""

    def test_plain_failure(self):
        exc = AuthError.from_code("auth/too-many-requests", operation=Operation.SIGN_IN)
        assert type(exc) is AuthError
        assert exc.kind is ErrorKind.RATE_LIMITED
        assert str(exc) == exc.user_message

    def test_not_ready(self):
        exc = AuthError.from_code(ATTESTATION_UNAVAILABLE)
        assert type(exc) is NotReadyError

    def test_widget_unavailable(self):
        exc = NotReadyError.from_code(WIDGET_UNAVAILABLE)
        assert isinstance(exc, WidgetUnavailableError)
        assert exc.code == WIDGET_UNAVAILABLE

    def test_no_enrolled_factor(self):
        exc = AuthError.from_code(NO_ENROLLED_FACTOR)
        assert isinstance(exc, NoEnrolledFactorError)
        assert exc.error.is_terminal
