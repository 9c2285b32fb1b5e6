"""Profile filtering rules applied when releasing data to a counterpart."""

from dataclasses import dataclass

from contact_exchange.domain.exchange import SharingCategory

_PREVIEW_VALUE_FIELDS = {"name", "bio"}


@dataclass(frozen=True)
class Profile:
    """A counterpart profile as released to the other side."""

    profile_id: str
    data: dict[str, object]


def release_category(category: SharingCategory) -> SharingCategory:
    """Map the chosen sharing category to the section released on match."""
    if category is SharingCategory.ALL:
        return SharingCategory.PERSONAL
    return category


def _entry_visible(entry: dict[str, object], category: SharingCategory) -> bool:
    if entry.get("isVisible") is False:
        return False
    section = entry.get("section")
    if category is SharingCategory.PERSONAL and section == "work":
        return False
    if category is SharingCategory.WORK and section == "personal":
        return False
    return True


def filter_profile(profile: Profile, category: SharingCategory) -> Profile:
    """Return a copy of the profile with only entries for the category."""
    data = dict(profile.data)
    entries = data.get("contactEntries", [])
    if isinstance(entries, list):
        data["contactEntries"] = [
            entry
            for entry in entries
            if isinstance(entry, dict) and _entry_visible(entry, category)
        ]
    return Profile(profile_id=profile.profile_id, data=data)


def preview_profile(profile: Profile, category: SharingCategory) -> Profile:
    """Return a limited profile for a scanner who has not signed in yet.

    Name and bio keep their values; every other visible entry is kept with an
    empty value so the client can render icons without leaking details.
    """
    filtered = filter_profile(profile, category)
    entries = filtered.data.get("contactEntries", [])
    limited: list[dict[str, object]] = []
    if isinstance(entries, list):
        for entry in entries:
            if entry.get("fieldType") in _PREVIEW_VALUE_FIELDS:
                limited.append(entry)
            else:
                limited.append({**entry, "value": ""})
    data = {
        key: filtered.data[key]
        for key in ("userId", "shortCode", "profileImage", "backgroundColors")
        if key in filtered.data
    }
    data["contactEntries"] = limited
    return Profile(profile_id=profile.profile_id, data=data)
