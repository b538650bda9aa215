"""Capability sets for the kinds of uploaded content.

Public collections and the private personal-file store share validation and
storage code; what differs between them is captured here instead of in
parallel code paths.
"""
from dataclasses import dataclass

from college_katta.core import config

KIND_FILE = "file"
KIND_STUDY_MATERIAL = "study_material"
KIND_PERSONAL = "personal"

SCOPE_PUBLIC = "public"
SCOPE_PRIVATE = "private"


@dataclass(frozen=True)
class KindCapabilities:
    kind: str
    label: str
    needs_approval: bool
    owner_scope: str
    storage_folder: str
    limit_setting: str

    @property
    def max_bytes(self) -> int:
        return getattr(config, self.limit_setting)


CAPABILITIES = {
    KIND_FILE: KindCapabilities(
        kind=KIND_FILE,
        label="File",
        needs_approval=True,
        owner_scope=SCOPE_PUBLIC,
        storage_folder="files",
        limit_setting="SUBMISSION_MAX_BYTES",
    ),
    KIND_STUDY_MATERIAL: KindCapabilities(
        kind=KIND_STUDY_MATERIAL,
        label="Study material",
        needs_approval=True,
        owner_scope=SCOPE_PUBLIC,
        storage_folder="study-materials",
        limit_setting="SUBMISSION_MAX_BYTES",
    ),
    KIND_PERSONAL: KindCapabilities(
        kind=KIND_PERSONAL,
        label="Personal file",
        needs_approval=False,
        owner_scope=SCOPE_PRIVATE,
        storage_folder="personal-files",
        limit_setting="PERSONAL_FILE_MAX_BYTES",
    ),
}


def get_capabilities(kind: str) -> KindCapabilities:
    try:
        return CAPABILITIES[kind]
    except KeyError as exc:
        raise ValueError(f"Unknown content kind: {kind}") from exc
