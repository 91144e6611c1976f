"""
The watch registry binds a custom resource kind to the chart, role or playbook
that reconciles it. Entries are read from a watches file:

- group: demo.example.com
  version: v1alpha1
  kind: Nginx
  chart: helm-charts/nginx
  overrideValues:
    image.repository: ${RELATED_IMAGE_NGINX}
- group: demo.example.com
  version: v1alpha1
  kind: Memcached
  role: memcached
  reconcilePeriod: 1m
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional
import copy
import os

# Third Party
import yaml

# First Party
import alog

# Local
from . import config
from .constants import DEFAULT_CHART_FINALIZER
from .exceptions import ConfigError, assert_config
from .selectors import make_label_selector, match_selector
from .utils import parse_time_delta

log = alog.use_channel("WATCH")


class TargetType(Enum):
    """The kinds of targets a watch entry can bind to"""

    CHART = "chart"
    ROLE = "role"
    PLAYBOOK = "playbook"


@dataclass
class Finalizer:
    """Cleanup hook run when a CR of the watched kind is deleted"""

    name: str
    vars: dict = field(default_factory=dict)


@dataclass
class WatchEntry:  # pylint: disable=too-many-instance-attributes
    """A single (group, version, kind) -> target binding"""

    group: str
    version: str
    kind: str
    target_type: TargetType
    target: str
    override_values: dict = field(default_factory=dict)
    vars: dict = field(default_factory=dict)
    reconcile_period: Optional[str] = None
    watch_dependent_resources: bool = True
    manage_status: bool = True
    snake_case_parameters: bool = True
    finalizer: Optional[Finalizer] = None
    selector: Dict[str, str] = field(default_factory=dict)

    ## Construction ############################################################

    @classmethod
    def from_dict(cls, raw_entry: dict, base_dir: str = ".") -> "WatchEntry":
        """Validate and normalize a single entry from a watches file

        Args:
            raw_entry:  dict
                The parsed mapping for this entry
            base_dir:  str
                The directory relative chart and playbook paths resolve against

        Returns:
            entry:  WatchEntry
                The validated entry
        """
        assert_config(
            isinstance(raw_entry, dict), f"Watch entry must be a mapping: {raw_entry}"
        )
        for key in ["version", "kind"]:
            assert_config(
                isinstance(raw_entry.get(key), str) and raw_entry[key],
                f"Watch entry missing required field [{key}]: {raw_entry}",
            )
        group = raw_entry.get("group", "")
        assert_config(
            isinstance(group, str), f"Watch entry group must be a string: {raw_entry}"
        )

        targets = [
            target_type
            for target_type in TargetType
            if raw_entry.get(target_type.value)
        ]
        assert_config(
            len(targets) == 1,
            "Watch entry must set exactly one of chart, role or playbook: "
            f"{raw_entry}",
        )
        target_type = targets[0]
        target = str(raw_entry[target_type.value])
        if target_type != TargetType.ROLE or os.sep in target:
            target = os.path.normpath(os.path.join(base_dir, target))

        reconcile_period = raw_entry.get("reconcilePeriod")
        if reconcile_period is not None:
            reconcile_period = str(reconcile_period)
            assert_config(
                parse_time_delta(reconcile_period) is not None,
                f"Invalid reconcilePeriod [{reconcile_period}]",
            )

        override_values = raw_entry.get("overrideValues") or {}
        entry_vars = raw_entry.get("vars") or {}
        assert_config(isinstance(override_values, dict), "overrideValues must be a map")
        assert_config(isinstance(entry_vars, dict), "vars must be a map")
        if target_type == TargetType.CHART:
            assert_config(not entry_vars, "vars are only supported for roles")
        else:
            assert_config(
                not override_values, "overrideValues are only supported for charts"
            )

        raw_selector = raw_entry.get("selector") or {}
        assert_config(isinstance(raw_selector, dict), "selector must be a map")
        selector = raw_selector.get("matchLabels") or {}
        assert_config(isinstance(selector, dict), "selector.matchLabels must be a map")

        return cls(
            group=group,
            version=raw_entry["version"],
            kind=raw_entry["kind"],
            target_type=target_type,
            target=target,
            override_values=copy.deepcopy(override_values),
            vars=copy.deepcopy(entry_vars),
            reconcile_period=reconcile_period,
            watch_dependent_resources=bool(
                raw_entry.get("watchDependentResources", True)
            ),
            manage_status=bool(raw_entry.get("manageStatus", True)),
            snake_case_parameters=bool(
                raw_entry.get(
                    "snakeCaseParameters", config.role.snake_case_parameters
                )
            ),
            finalizer=cls._parse_finalizer(raw_entry, target_type),
            selector={str(key): str(val) for key, val in selector.items()},
        )

    @staticmethod
    def _parse_finalizer(
        raw_entry: dict, target_type: TargetType
    ) -> Optional[Finalizer]:
        """Charts always get the uninstall finalizer unless one is named. Roles
        only get one when it is configured.
        """
        raw_finalizer = raw_entry.get("finalizer")
        if raw_finalizer is None:
            if target_type == TargetType.CHART:
                return Finalizer(name=DEFAULT_CHART_FINALIZER)
            return None
        assert_config(
            isinstance(raw_finalizer, dict) and raw_finalizer.get("name"),
            f"Finalizer must have a name: {raw_finalizer}",
        )
        finalizer_vars = raw_finalizer.get("vars") or {}
        assert_config(isinstance(finalizer_vars, dict), "finalizer.vars must be a map")
        return Finalizer(name=raw_finalizer["name"], vars=dict(finalizer_vars))

    ## Properties ##############################################################

    @property
    def api_version(self) -> str:
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    @property
    def label_selector(self) -> Optional[str]:
        return make_label_selector(self.selector)

    @property
    def requeue_period(self):
        """The timedelta to requeue successful reconciles after, if any"""
        period = self.reconcile_period or config.reconcile_period
        if not period:
            return None
        return parse_time_delta(period)

    def matches(self, resource: dict) -> bool:
        """Whether a resource's labels satisfy this entry's selector"""
        labels = resource.get("metadata", {}).get("labels") or {}
        return match_selector(labels, self.label_selector)

    def __str__(self):
        target = f"{self.target_type.value}:{self.target}"
        return f"{self.api_version}/{self.kind} -> {target}"


class WatchRegistry:
    """Ordered collection of watch entries keyed by (group, version, kind)"""

    def __init__(self, entries: Optional[List[WatchEntry]] = None):
        self._entries = {}
        for entry in entries or []:
            self.add(entry)

    @classmethod
    def from_file(cls, path: str) -> "WatchRegistry":
        """Load a registry from a watches file

        Args:
            path:  str
                Path to the yaml file holding the list of entries

        Returns:
            registry:  WatchRegistry
                The registry holding every valid entry
        """
        try:
            with open(path, encoding="utf-8") as handle:
                raw_entries = yaml.safe_load(handle)
        except OSError as err:
            raise ConfigError(f"Unable to read watches file {path}: {err}") from err
        except yaml.YAMLError as err:
            raise ConfigError(f"Invalid yaml in watches file {path}: {err}") from err

        assert_config(
            isinstance(raw_entries, list),
            f"Watches file {path} must contain a list of entries",
        )
        base_dir = os.path.dirname(os.path.abspath(path))
        return cls([WatchEntry.from_dict(raw, base_dir) for raw in raw_entries])

    def add(self, entry: WatchEntry) -> bool:
        """Add an entry. If the (group, version, kind) is already registered the
        first entry wins and the new one is ignored.

        Returns:
            added:  bool
                True if the entry was registered
        """
        key = (entry.group, entry.version, entry.kind)
        if key in self._entries:
            log.warning(
                "Ignoring duplicate watch for %s. Keeping %s", entry, self._entries[key]
            )
            return False
        log.debug("Registering watch %s", entry)
        self._entries[key] = entry
        return True

    def lookup(self, group: str, version: str, kind: str) -> Optional[WatchEntry]:
        return self._entries.get((group or "", version, kind))

    def lookup_resource(self, resource: dict) -> Optional[WatchEntry]:
        """Find the entry for a resource manifest by its apiVersion and kind"""
        api_version = resource.get("apiVersion", "")
        group, _, version = api_version.rpartition("/")
        return self.lookup(group, version, resource.get("kind"))

    def __iter__(self) -> Iterator[WatchEntry]:
        return iter(self._entries.values())

    def __len__(self):
        return len(self._entries)
