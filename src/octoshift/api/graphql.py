"""GraphQL response envelope parsing and inspection."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .classifier import AttemptOutcome, FailureKind

# Error types GitHub reports when the service itself failed the query
TRANSIENT_ERROR_TYPES = frozenset({'SERVICE_UNAVAILABLE', 'TIMEOUT', 'INTERNAL'})
UNKNOWN_ERROR_MESSAGE = 'UNKNOWN'


class GraphQLErrorEntry(BaseModel):
    """One entry of the ``errors`` array."""

    model_config = ConfigDict(extra='allow')

    type: Optional[str] = None
    message: Optional[str] = None
    path: Any = None
    locations: Any = None

    @field_validator('type', 'message', mode='before')
    @classmethod
    def coerce_text(cls, v):
        """Coerce non-string values to text."""
        if v is None or isinstance(v, str):
            return v
        return str(v)


class GraphQLEnvelope(BaseModel):
    """The ``{data, errors}`` wrapper of every GraphQL response."""

    data: Optional[Dict[str, Any]] = None
    errors: List[GraphQLErrorEntry] = Field(default_factory=list)

    @classmethod
    def parse(cls, payload: Any) -> 'GraphQLEnvelope':
        if not isinstance(payload, dict):
            return cls()
        errors = payload.get('errors') or []
        if not isinstance(errors, list):
            errors = [errors]
        return cls(
            data=payload.get('data') if isinstance(payload.get('data'), dict) else None,
            errors=[
                GraphQLErrorEntry(**entry)
                if isinstance(entry, dict)
                else GraphQLErrorEntry(message=str(entry))
                for entry in errors
            ],
        )


class GraphQLInspection(BaseModel):
    """Verdict on a GraphQL envelope."""

    kind: FailureKind
    data: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    errors: List[GraphQLErrorEntry] = Field(default_factory=list)


def inspect_envelope(envelope: GraphQLEnvelope) -> GraphQLInspection:
    """Decide whether an envelope is ok, retryable, or a terminal error.

    The absence of errors, not the presence of data, means success.
    """
    if not envelope.errors:
        return GraphQLInspection(kind=FailureKind.SUCCESS, data=envelope.data)

    first = envelope.errors[0]
    message = first.message or UNKNOWN_ERROR_MESSAGE

    if any((entry.type or '').upper() in TRANSIENT_ERROR_TYPES for entry in envelope.errors):
        return GraphQLInspection(
            kind=FailureKind.GRAPHQL_SERVICE_ERROR,
            message=message,
            errors=envelope.errors,
        )

    return GraphQLInspection(
        kind=FailureKind.GRAPHQL_APPLICATION_ERROR,
        message=message,
        errors=envelope.errors,
    )


def inspect_outcome(outcome: AttemptOutcome) -> GraphQLInspection:
    """Inspect the parsed body of a successful attempt."""
    return inspect_envelope(GraphQLEnvelope.parse(outcome.data))
