"""Tests for GraphQL envelope inspection."""

from octoshift.api.classifier import AttemptOutcome, FailureKind
from octoshift.api.graphql import (
    GraphQLEnvelope,
    UNKNOWN_ERROR_MESSAGE,
    inspect_envelope,
    inspect_outcome,
)


class TestGraphQLEnvelope:
    """Test envelope parsing."""

    def test_parse_data_and_errors(self):
        """Test data and error entries are parsed."""
        envelope = GraphQLEnvelope.parse(
            {
                'data': {'organization': None},
                'errors': [
                    {
                        'type': 'NOT_FOUND',
                        'message': 'Could not resolve to an Organization',
                        'path': ['organization'],
                        'locations': [{'line': 1, 'column': 9}],
                    }
                ],
            }
        )

        assert envelope.data == {'organization': None}
        assert envelope.errors[0].type == 'NOT_FOUND'
        assert envelope.errors[0].path == ['organization']

    def test_parse_non_object(self):
        """Test a non-object payload parses to an empty envelope."""
        envelope = GraphQLEnvelope.parse(['unexpected'])

        assert envelope.data is None
        assert envelope.errors == []

    def test_extra_error_fields_kept(self):
        """Test unknown error entry fields are preserved."""
        envelope = GraphQLEnvelope.parse(
            {'errors': [{'message': 'oops', 'extensions': {'code': 'X'}}]}
        )

        assert envelope.errors[0].model_dump()['extensions'] == {'code': 'X'}


class TestInspectEnvelope:
    """Test envelope verdicts."""

    def test_no_errors_is_success(self):
        """Test an envelope without errors is a success."""
        inspection = inspect_envelope(GraphQLEnvelope.parse({'data': {'viewer': {}}}))

        assert inspection.kind is FailureKind.SUCCESS
        assert inspection.data == {'viewer': {}}

    def test_empty_errors_with_null_data_is_success(self):
        """Test null data fields do not make a failure."""
        inspection = inspect_envelope(
            GraphQLEnvelope.parse({'data': {'repository': None}, 'errors': []})
        )

        assert inspection.kind is FailureKind.SUCCESS

    def test_service_unavailable_is_retryable(self):
        """Test SERVICE_UNAVAILABLE entries are service errors."""
        inspection = inspect_envelope(
            GraphQLEnvelope.parse(
                {'errors': [{'type': 'SERVICE_UNAVAILABLE', 'message': 'busy'}]}
            )
        )

        assert inspection.kind is FailureKind.GRAPHQL_SERVICE_ERROR
        assert inspection.message == 'busy'

    def test_any_transient_entry_is_retryable(self):
        """Test one transient entry among others makes the response retryable."""
        inspection = inspect_envelope(
            GraphQLEnvelope.parse(
                {
                    'errors': [
                        {'type': 'FORBIDDEN', 'message': 'first'},
                        {'type': 'timeout', 'message': 'second'},
                    ]
                }
            )
        )

        assert inspection.kind is FailureKind.GRAPHQL_SERVICE_ERROR
        assert inspection.message == 'first'

    def test_application_error_uses_first_message(self):
        """Test the first entry's message is the application error message."""
        inspection = inspect_envelope(
            GraphQLEnvelope.parse(
                {
                    'errors': [
                        {'type': 'FORBIDDEN', 'message': 'SAML enforcement'},
                        {'type': 'FORBIDDEN', 'message': 'ignored'},
                    ]
                }
            )
        )

        assert inspection.kind is FailureKind.GRAPHQL_APPLICATION_ERROR
        assert inspection.message == 'SAML enforcement'

    def test_missing_message(self):
        """Test an entry with no message reports UNKNOWN."""
        inspection = inspect_envelope(GraphQLEnvelope.parse({'errors': [{}]}))

        assert inspection.kind is FailureKind.GRAPHQL_APPLICATION_ERROR
        assert inspection.message == UNKNOWN_ERROR_MESSAGE

    def test_irregular_path_is_application_error(self):
        """Test a string path and odd locations still give an application error."""
        inspection = inspect_envelope(
            GraphQLEnvelope.parse(
                {
                    'errors': [
                        {
                            'type': 'FORBIDDEN',
                            'message': 'SAML enforcement',
                            'path': 'org',
                            'locations': 'line 1',
                        }
                    ]
                }
            )
        )

        assert inspection.kind is FailureKind.GRAPHQL_APPLICATION_ERROR
        assert inspection.message == 'SAML enforcement'
        assert inspection.errors[0].path == 'org'

    def test_non_string_message_coerced(self):
        """Test a numeric message is reported as text."""
        inspection = inspect_envelope(GraphQLEnvelope.parse({'errors': [{'message': 42}]}))

        assert inspection.kind is FailureKind.GRAPHQL_APPLICATION_ERROR
        assert inspection.message == '42'

    def test_non_string_type_coerced(self):
        """Test a non-string type is compared as text."""
        inspection = inspect_envelope(
            GraphQLEnvelope.parse({'errors': [{'type': 500, 'message': 'boom'}]})
        )

        assert inspection.kind is FailureKind.GRAPHQL_APPLICATION_ERROR
        assert inspection.errors[0].type == '500'

    def test_single_error_object(self):
        """Test an ``errors`` object instead of an array is one entry."""
        inspection = inspect_envelope(
            GraphQLEnvelope.parse({'errors': {'type': 'TIMEOUT', 'message': 'slow'}})
        )

        assert inspection.kind is FailureKind.GRAPHQL_SERVICE_ERROR
        assert inspection.message == 'slow'

    def test_inspect_outcome(self):
        """Test an attempt's parsed body is inspected."""
        outcome = AttemptOutcome(
            status_code=200,
            data={'errors': [{'message': 'Field does not exist'}]},
        )

        inspection = inspect_outcome(outcome)

        assert inspection.kind is FailureKind.GRAPHQL_APPLICATION_ERROR
        assert inspection.message == 'Field does not exist'
