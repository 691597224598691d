"""Model for the image usage report produced by ``image-tool``.

The report is keyed by image family (which corresponds to a registry
organization); each family maps image names to tags to the list of
places that tag is deployed.
"""

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, RootModel

__all__ = ["ClusterReport", "FamilyUsage", "ImageUsage", "UsageReport"]


class ImageUsage(BaseModel):
    """One deployment of an image tag."""

    model_config = ConfigDict(populate_by_name=True)

    cluster: Annotated[str, Field(alias="Cluster")] = ""
    used_in_namespace: Annotated[str, Field(alias="UsedInNamespace")] = ""
    from_namespace: Annotated[str, Field(alias="FromNamespace")] = ""
    age_in_days: Annotated[int, Field(alias="AgeInDays")] = 0
    image: Annotated[str, Field(alias="Image")] = ""
    registry_url: Annotated[str, Field(alias="RegistryUrl")] = ""


class ClusterReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_stream_tags: Annotated[int, Field(alias="Anz_ImageStreamTags")] = 0
    images: Annotated[int, Field(alias="Anz_Images")] = 0
    image_streams: Annotated[int, Field(alias="Anz_ImageStreams")] = 0


class _ClusterData(BaseModel):
    report: Annotated[ClusterReport, Field(alias="Report")] = ClusterReport()


class FamilyUsage(BaseModel):
    """Usage data for one image family."""

    model_config = ConfigDict(populate_by_name=True)

    all_istags: Annotated[
        dict[str, _ClusterData], Field(alias="AllIstags")
    ] = {}
    used_istags: Annotated[
        dict[str, dict[str, list[ImageUsage]]], Field(alias="UsedIstags")
    ] = {}
    unused_istags: Annotated[Any, Field(alias="UnUsedIstags")] = None


class UsageReport(RootModel[dict[str, FamilyUsage]]):
    """Which image references are deployed, per image family."""

    root: dict[str, FamilyUsage] = {}

    def usages(self, family: str) -> list[ImageUsage]:
        """Flatten every deployment recorded for a family."""
        data = self.root.get(family)
        if data is None:
            return []
        return [
            usage
            for tags in data.used_istags.values()
            for usages in tags.values()
            for usage in usages
        ]

    def find(self, family: str, reference: str) -> ImageUsage | None:
        """Find a deployment whose registry URL contains ``reference``.

        This is a substring match, so a short reference can match a longer
        one (``app:1`` is found in ``app:10``).
        """
        for usage in self.usages(family):
            if reference in usage.registry_url:
                return usage
        return None

    def cluster_reports(self, family: str) -> dict[str, ClusterReport]:
        data = self.root.get(family)
        if data is None:
            return {}
        return {name: c.report for name, c in data.all_istags.items()}
