"""Load the image usage report by running ``image-tool``."""

import subprocess

import structlog
from pydantic import ValidationError
from structlog.stdlib import BoundLogger

from ..exceptions import UsageReportError
from ..models.usage import UsageReport

__all__ = ["ImageToolClient"]


class ImageToolClient:
    """Run the external usage-report tool for one image family.

    Parameters
    ----------
    command
        Name or path of the tool.
    verbose
        Ask the tool for verification output, and log a per-cluster
        summary of the report.
    logger
        Logger to use for messages.
    """

    def __init__(
        self,
        command: str = "image-tool",
        *,
        verbose: bool = False,
        logger: BoundLogger | None = None,
    ) -> None:
        self._command = command
        self._verbose = verbose
        self._logger = logger or structlog.get_logger(__name__)

    def _args(self, family: str) -> list[str]:
        args = [self._command, "-family", family, "-used", "-json", "-statcfg"]
        if self._verbose:
            args.append("-verify")
        return args

    def load(self, family: str) -> UsageReport:
        """Report which tags of ``family`` are deployed anywhere."""
        args = self._args(family)
        self._logger.debug(f"Running {' '.join(args)}")
        try:
            proc = subprocess.run(
                args, capture_output=True, check=True, text=True
            )
        except (OSError, subprocess.CalledProcessError) as e:
            raise UsageReportError(f"failed to execute command: {e}") from e
        try:
            report = UsageReport.model_validate_json(proc.stdout)
        except ValidationError as e:
            raise UsageReportError(f"failed to unmarshal JSON: {e}") from e
        if self._verbose:
            for cluster, summary in report.cluster_reports(family).items():
                self._logger.debug(
                    f"Usage report for cluster {cluster}",
                    image_stream_tags=summary.image_stream_tags,
                    images=summary.images,
                    image_streams=summary.image_streams,
                )
        return report
