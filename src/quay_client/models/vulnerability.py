"""Models for the security scan report of a manifest."""

from typing import Annotated, Any, Self

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    model_serializer,
    model_validator,
)

__all__ = ["SCANNED", "Feature", "Finding", "VulnerabilityReport"]

SCANNED = "scanned"
"""The only scan status whose data is complete enough to use."""


def _none_is_empty_list(inp: Any) -> Any:
    # The scanner sends null rather than [] for empty lists.
    if inp is None:
        return []
    return inp


def _none_is_empty_str(inp: Any) -> Any:
    if inp is None:
        return ""
    return inp


_Str = Annotated[str, BeforeValidator(_none_is_empty_str)]


class Finding(BaseModel):
    """A single vulnerability reported against a feature."""

    model_config = ConfigDict(populate_by_name=True)

    name: Annotated[_Str, Field(alias="Name")] = ""
    link: Annotated[_Str, Field(alias="Link")] = ""
    description: Annotated[_Str, Field(alias="Description")] = ""
    fixed_by: Annotated[_Str, Field(alias="FixedBy")] = ""
    severity: Annotated[_Str, Field(alias="Severity")] = ""


class Feature(BaseModel):
    """A software component the scanner found in an image layer."""

    model_config = ConfigDict(populate_by_name=True)

    name: Annotated[
        _Str,
        Field(alias="Name", title="Name", description="Package name"),
    ] = ""

    version: Annotated[
        _Str,
        Field(
            alias="Version", title="Version", description="Package version"
        ),
    ] = ""

    base_scores: Annotated[
        list[float],
        BeforeValidator(_none_is_empty_list),
        Field(
            alias="BaseScores",
            title="Base scores",
            description="CVSS base scores of the package's vulnerabilities",
        ),
    ] = []

    cve_ids: Annotated[
        list[str],
        BeforeValidator(_none_is_empty_list),
        Field(
            alias="CVEIds",
            title="CVE IDs",
            description="CVE identifiers affecting the package",
        ),
    ] = []

    findings: Annotated[
        list[Finding],
        BeforeValidator(_none_is_empty_list),
        Field(
            alias="Vulnerabilities",
            title="Findings",
            description="Individual vulnerabilities affecting the package",
        ),
    ] = []

    def is_empty(self) -> bool:
        """Whether the scanner had nothing to say about this feature."""
        return not (self.findings or self.base_scores or self.cve_ids)


class VulnerabilityReport(BaseModel):
    """Security scan report for one manifest.

    On the wire the features are nested as ``data.Layer.Features``; the
    model flattens that on input and restores it on output.  A report
    whose ``features`` is `None` carries the scan status only.
    """

    status: str = ""
    features: list[Feature] | None = None

    @model_validator(mode="before")
    @classmethod
    def _unwrap_layer(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "data" not in data:
            return data
        layer = (data.get("data") or {}).get("Layer") or {}
        return {
            "status": data.get("status") or "",
            "features": layer.get("Features") or [],
        }

    @model_serializer
    def _nest_layer(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status}
        if self.features is not None:
            result["data"] = {
                "Layer": {
                    "Features": [
                        f.model_dump(by_alias=True) for f in self.features
                    ]
                }
            }
        return result

    @property
    def scanned(self) -> bool:
        return self.status == SCANNED

    def status_only(self) -> Self:
        """Copy of this report with every feature dropped."""
        return type(self)(status=self.status)
