"""NPM version picking using semantic versioning."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

import semantic_version

from resolution.errors import GraphError

_RANGE_MARKERS = ('^', '~', '*', 'x', 'X', '-', '<', '>', '=', '|', ' ')


class NpmVersionPicker:
    """Select the concrete version an npm requirement refers to.

    Order of precedence: dist-tag, exact version, then ranges. For ranges the
    ``latest`` dist-tag wins when it satisfies the range, otherwise the
    highest matching release is chosen.
    """

    def pick(
        self, requested: Optional[str], packument: Dict[str, Any]
    ) -> Tuple[Optional[str], int, Optional[str]]:
        """Apply NPM semver rules to select version.

        Args:
            requested: Version, range or dist-tag; None or "" means latest.
            packument: Registry document with ``versions`` and ``dist-tags``.

        Returns:
            Tuple of (resolved_version, candidate_count, error_message)
        """
        candidates = list((packument.get("versions") or {}).keys())
        dist_tags = packument.get("dist-tags") or {}
        spec = (requested or "").strip()

        if not spec:
            spec = "latest"
        if spec in dist_tags:
            tagged = dist_tags[spec]
            if tagged in candidates:
                return tagged, len(candidates), None
            return None, len(candidates), f"Dist-tag '{spec}' points to missing version {tagged}"

        if spec.lstrip("v=") in candidates:
            return self._pick_exact(spec.lstrip("v="), candidates)

        if spec == "latest":
            return self._pick_latest(candidates)

        if not any(marker in spec for marker in _RANGE_MARKERS) and not re.match(r'^\d+(\.\d+)?$', spec):
            return self._pick_exact(spec, candidates)

        include_prerelease = any(pre in spec.lower() for pre in ['pre', 'rc', 'alpha', 'beta'])
        return self._pick_range(spec, candidates, include_prerelease, dist_tags.get("latest"))

    def _pick_latest(self, candidates: List[str]) -> Tuple[Optional[str], int, Optional[str]]:
        """Pick the highest non-prerelease version from candidates."""
        if not candidates:
            return None, 0, "No versions available"

        parsed_versions = []
        for v in candidates:
            try:
                parsed = semantic_version.Version(v)
            except ValueError:
                continue  # Skip invalid versions
            if not parsed.prerelease:
                parsed_versions.append(parsed)

        if not parsed_versions:
            return None, len(candidates), "No valid semantic versions found"

        parsed_versions.sort(reverse=True)
        return str(parsed_versions[0]), len(candidates), None

    def _pick_exact(self, version: str, candidates: List[str]) -> Tuple[Optional[str], int, Optional[str]]:
        """Check if exact version exists in candidates."""
        if version in candidates:
            return version, len(candidates), None
        return None, len(candidates), f"Version {version} not found"

    def _normalize_spec(self, spec_str: str) -> str:
        """Normalize npm range syntax (hyphen, x-ranges) into SimpleSpec-compatible form."""
        s = spec_str.strip()

        # Hyphen ranges: "1.2.3 - 1.4.5" => ">=1.2.3, <=1.4.5"
        m = re.match(r'^\s*([0-9A-Za-z\.\-\+]+)\s*-\s*([0-9A-Za-z\.\-\+]+)\s*$', s)
        if m:
            left, right = m.group(1), m.group(2)
            return f">={left},<={right}"

        # x-ranges: 1.2.x or 1.x or 1.* -> convert to comparator pairs
        s2 = s.replace('*', 'x').lower()
        m = re.match(r'^\s*(\d+)\.(\d+)(\.x)?\s*$', s2)
        if m:
            major, minor = int(m.group(1)), int(m.group(2))
            return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

        m = re.match(r'^\s*(\d+)(\.x)?\s*$', s2)
        if m:
            major = int(m.group(1))
            return f">={major}.0.0,<{major + 1}.0.0"

        return spec_str

    def _parse_spec(self, spec_str: str):
        # Prefer NpmSpec which understands ^, ~, hyphen ranges, and x-ranges natively
        try:
            return semantic_version.NpmSpec(spec_str)
        except ValueError:
            return semantic_version.SimpleSpec(self._normalize_spec(spec_str))

    def _pick_range(
        self,
        spec_str: str,
        candidates: List[str],
        include_prerelease: bool,
        latest_tag: Optional[str] = None,
    ) -> Tuple[Optional[str], int, Optional[str]]:
        """Apply semver range and pick the latest tag or the highest match."""
        try:
            spec = self._parse_spec(spec_str)
        except ValueError as e:
            return None, len(candidates), f"Invalid semver spec: {str(e)}"

        matching_versions = []
        for v in candidates:
            try:
                ver = semantic_version.Version(v)
            except ValueError:
                continue  # Skip invalid versions
            if ver.prerelease and not include_prerelease:
                continue
            if spec.match(ver):
                matching_versions.append(ver)

        if not matching_versions:
            return None, len(candidates), f"No versions match spec '{spec_str}'"

        if latest_tag and latest_tag in {str(v) for v in matching_versions}:
            return latest_tag, len(candidates), None

        matching_versions.sort(reverse=True)
        return str(matching_versions[0]), len(candidates), None


def pick_version(name: str, requested: Optional[str], packument: Dict[str, Any]) -> str:
    """Concrete version for ``name@requested``.

    Raises:
        GraphError: nothing in the packument satisfies the request.
    """
    version, _, error = NpmVersionPicker().pick(requested, packument)
    if version is None:
        raise GraphError(
            f"Could not find npm package '{name}' matching '{requested or 'latest'}': {error}"
        )
    return version
