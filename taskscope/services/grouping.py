from typing import Dict, List

from taskscope.models import Screenshot


def group_by_capture_group(screenshots: List[Screenshot]) -> List[List[Screenshot]]:
    """Partition screenshots into capture groups.

    Keyed groups come first in ascending key order (keys are tick
    timestamps, so this is chronological), each preserving input order.
    Screenshots without a key follow as singleton groups in input order.
    """
    keyed: Dict[str, List[Screenshot]] = {}
    ungrouped: List[List[Screenshot]] = []

    for shot in screenshots:
        if shot.capture_group is None:
            ungrouped.append([shot])
        else:
            keyed.setdefault(shot.capture_group, []).append(shot)

    groups = [keyed[key] for key in sorted(keyed)]
    groups.extend(ungrouped)
    return groups
