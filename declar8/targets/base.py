"""
Base interface shared by chart and role targets
"""

# Standard
from dataclasses import dataclass, field
from typing import List, Optional
import abc

# First Party
import alog

# Local
from ..exceptions import assert_config

log = alog.use_channel("TRGT")

KUBE_LIST_SUFFIX = "List"


@dataclass
class RenderResult:
    """The outcome of rendering a target for one CR"""

    # Ordered resources to apply
    resources: List[dict] = field(default_factory=list)

    # Human readable summary of the render
    message: str = ""

    # Task counters reported by role targets
    summary: Optional[dict] = None


class TargetBase(abc.ABC):
    """A target turns a CR and its watch entry into resources"""

    @abc.abstractmethod
    def render(
        self,
        cr_manifest: dict,
        entry: "WatchEntry",  # noqa: F821
        extra_vars: Optional[dict] = None,
    ) -> RenderResult:
        """Render the target for the given CR

        Args:
            cr_manifest:  dict
                The CR being reconciled
            entry:  WatchEntry
                The watch entry bound to the CR's kind
            extra_vars:  Optional[dict]
                Additional variables for the render, used by finalizers

        Returns:
            result:  RenderResult
                The rendered resources
        """


def flatten_resources(documents: List[Optional[dict]]) -> List[dict]:
    """Drop empty documents and expand kubernetes List kinds into their items

    Args:
        documents:  List[Optional[dict]]
            Parsed yaml documents

    Returns:
        resources:  List[dict]
            The flat list of resource manifests, in order
    """
    resources = []
    for document in documents:
        if not document:
            continue
        assert_config(
            isinstance(document, dict),
            f"Rendered document is not a mapping: {document}",
        )
        kind = document.get("kind", "")
        if kind.endswith(KUBE_LIST_SUFFIX) and isinstance(document.get("items"), list):
            log.debug3("Expanding %s with %d items", kind, len(document["items"]))
            resources.extend(flatten_resources(document["items"]))
        else:
            resources.append(document)
    return resources
