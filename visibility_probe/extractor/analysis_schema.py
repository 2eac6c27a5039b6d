"""
Versioned schema for single-answer analysis output.

The analysis model returns JSON describing one generated answer:

    {
        "business_mentioned": true,
        "rank": 2,
        "mention_context": "Listed second among Portland roasters",
        "competitors": [
            {"name": "Stumptown", "rank": 1, "source_index": 2},
            {"name": "Coava", "rank": 3, "source_url": "https://b.com/coava"}
        ]
    }

parse_analysis() validates that payload strictly and normalizes it so the
rest of the pipeline only sees well-formed data:

- business_mentioned must be a real boolean ("true" or 1 are rejected)
- rank is dropped when the business is not mentioned (rank implies mention)
- rank values below 1 mean "no identifiable rank"
- competitors without a rank take their 1-based list position
- source_index (1-based into the answer's sources) is resolved to a URL

camelCase keys (businessMentioned, sourceIndex, sourceUrl) are accepted
for compatibility with prompts that ask for them.

Anything that does not fit raises AnalysisSchemaError, which the probe
records as a failed run.
"""

from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    ValidationError,
    field_validator,
    model_validator,
)

from visibility_probe.exceptions import AnalysisSchemaError

# Bump when the shape of AnswerAnalysis changes; stored on every run row
ANALYSIS_SCHEMA_VERSION = 1


def _coerce_rank(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("rank must be an integer or null, got a boolean")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"rank must be a whole number, got {value}")
        value = int(value)
    if not isinstance(value, int):
        raise ValueError(f"rank must be an integer or null, got {type(value).__name__}")
    return value if value >= 1 else None


class CompetitorMention(BaseModel):
    """
    A competing business named in an answer.

    Attributes:
        name: Competitor name as written in the answer
        rank: Position in the answer (1 = most prominent)
        source_url: URL the competitor was attributed to, if any
        source_index: 1-based index into the answer's sources (input only)
        mention_context: Optional short snippet around the mention
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    rank: int | None = None
    source_url: str | None = Field(
        default=None, validation_alias=AliasChoices("source_url", "sourceUrl")
    )
    source_index: int | None = Field(
        default=None, validation_alias=AliasChoices("source_index", "sourceIndex")
    )
    mention_context: str | None = Field(
        default=None, validation_alias=AliasChoices("mention_context", "mentionContext")
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("competitor name cannot be empty")
        return v

    @field_validator("rank", mode="before")
    @classmethod
    def validate_rank(cls, v: Any) -> int | None:
        return _coerce_rank(v)

    @field_validator("source_index", mode="before")
    @classmethod
    def validate_source_index(cls, v: Any) -> int | None:
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, float) and v.is_integer():
            return int(v)
        return v

    @field_validator("source_url")
    @classmethod
    def validate_source_url(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class AnswerAnalysis(BaseModel):
    """
    Structured analysis of one generated answer.

    Attributes:
        business_mentioned: Whether the business was explicitly mentioned
        rank: Position of the business in the answer, None if not ranked
        mention_context: Short description of how the business was mentioned
        competitors: Other businesses named in the answer
        schema_version: ANALYSIS_SCHEMA_VERSION the payload was validated against
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    business_mentioned: StrictBool = Field(
        validation_alias=AliasChoices("business_mentioned", "businessMentioned")
    )
    rank: int | None = None
    mention_context: str | None = Field(
        default=None, validation_alias=AliasChoices("mention_context", "mentionContext")
    )
    competitors: list[CompetitorMention] = Field(default_factory=list)
    schema_version: int = ANALYSIS_SCHEMA_VERSION

    @field_validator("rank", mode="before")
    @classmethod
    def validate_rank(cls, v: Any) -> int | None:
        return _coerce_rank(v)

    @field_validator("competitors", mode="before")
    @classmethod
    def validate_competitors(cls, v: Any) -> Any:
        return [] if v is None else v

    @model_validator(mode="after")
    def normalize(self) -> "AnswerAnalysis":
        """Drop ranks on unmentioned answers and fill missing competitor ranks."""
        if not self.business_mentioned:
            self.rank = None
            self.mention_context = None

        for position, competitor in enumerate(self.competitors, start=1):
            if competitor.rank is None:
                competitor.rank = position

        return self


def resolve_source_urls(analysis: AnswerAnalysis, sources: list[str]) -> AnswerAnalysis:
    """
    Resolve competitor source_index values against the answer's sources.

    An explicit source_url wins. An index outside 1..len(sources) leaves the
    competitor without a source.
    """
    for competitor in analysis.competitors:
        if competitor.source_url is None and competitor.source_index is not None:
            if 1 <= competitor.source_index <= len(sources):
                competitor.source_url = sources[competitor.source_index - 1]
        competitor.source_index = None
    return analysis


def parse_analysis(payload: Any, sources: list[str] | None = None) -> AnswerAnalysis:
    """
    Validate an analysis payload against the current schema.

    Args:
        payload: Decoded JSON object from the analysis model
        sources: Source URLs of the analyzed answer, for source_index lookups

    Returns:
        Normalized AnswerAnalysis

    Raises:
        AnalysisSchemaError: If the payload is not an object or fails validation

    Examples:
        >>> parse_analysis({"businessMentioned": False, "rank": 3}).rank is None
        True
        >>> parse_analysis({"business_mentioned": "yes"})
        Traceback (most recent call last):
        ...
        visibility_probe.exceptions.AnalysisSchemaError: ...
    """
    if not isinstance(payload, dict):
        raise AnalysisSchemaError(
            f"Analysis output must be a JSON object, got {type(payload).__name__}"
        )

    try:
        analysis = AnswerAnalysis.model_validate(payload)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise AnalysisSchemaError(f"Analysis output failed validation: {details}") from e

    return resolve_source_urls(analysis, sources or [])
