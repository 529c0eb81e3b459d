"""Resource resolution: local names and paths for images and attachments."""

import logging
import os
import posixpath
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set
from urllib.parse import unquote, urlparse

from models import AttachmentRecord, PlacementDecision, RefKind, ResolvedResource, ResourceRef
from .layout_policy import ATTACHMENTS_DIRECTORY, IMAGES_DIRECTORY

logger = logging.getLogger('confluence_extractor.exporters.resource_resolver')

DEFAULT_IMAGE_EXTENSION = '.png'
DIAGRAM_SOURCE_EXTENSION = '.drawio'


class ResourcePool:
    """
    Shared images/ and attachments/ directories of one run.

    Names are reserved under a lock and checked against both the filesystem
    and every name handed out earlier in the run, so two resources never
    end up with the same file.
    """

    def __init__(self, resource_root: Path, logger: Optional[logging.Logger] = None):
        self.resource_root = Path(resource_root)
        self.logger = logger or logging.getLogger('confluence_extractor.exporters.resource_resolver')
        self._reserved: Dict[str, Set[str]] = {
            IMAGES_DIRECTORY: set(),
            ATTACHMENTS_DIRECTORY: set()
        }
        self._lock = threading.Lock()

    def directory(self, kind: str) -> Path:
        return self.resource_root / kind

    def reserve(self, kind: str, prefix: str, sequence: int, extension: str) -> str:
        """
        Reserve a collision-free name in one of the pool directories.

        Args:
            kind: IMAGES_DIRECTORY or ATTACHMENTS_DIRECTORY
            prefix: Page name prefix ('' for the root page)
            sequence: 1-based position of the resource on its page
            extension: File extension including the dot (may be empty)

        Returns:
            The reserved file name
        """
        base = f'{prefix}{sequence:03d}'
        directory = self.directory(kind)
        with self._lock:
            reserved = self._reserved.setdefault(kind, set())
            name = f'{base}{extension}'
            counter = 1
            while name in reserved or (directory / name).exists():
                name = f'{base}_{counter}{extension}'
                counter += 1
            reserved.add(name)
        return name


def relative_prefix(placement: PlacementDecision) -> str:
    """Posix path prefix leading from a page file's directory to the resource root."""
    file_directory = os.path.dirname(placement.file_path)
    relative = os.path.relpath(placement.resource_root_directory, file_directory)
    relative = Path(relative).as_posix()
    if relative in ('', '.'):
        return ''
    return relative + '/'


def url_file_name(url: str) -> str:
    """File name of a URL path, query stripped and percent-decoded."""
    path = urlparse(url).path
    return posixpath.basename(unquote(path))


def file_extension(name: str) -> str:
    return os.path.splitext(name)[1]


class ResourceResolver:
    """Maps the resource references of a page to local files in the pool."""

    def __init__(self, pool: ResourcePool, logger: Optional[logging.Logger] = None):
        self.pool = pool
        self.logger = logger or logging.getLogger('confluence_extractor.exporters.resource_resolver')

    def _find_attachment(self, name: str, attachments: Dict[str, AttachmentRecord]) -> Optional[AttachmentRecord]:
        """Look an attachment up by exact name, then by percent-decoded name."""
        record = attachments.get(name)
        if record is None:
            record = attachments.get(unquote(name))
        return record

    def resolve_images(
        self,
        refs: List[ResourceRef],
        attachments: List[AttachmentRecord],
        placement: PlacementDecision
    ) -> Dict[str, ResolvedResource]:
        """
        Decide target files for the images referenced by a page.

        A ref's position in the list gives its sequence number, including refs
        that cannot be resolved (attachment refs without a matching record).

        Args:
            refs: Resource references in discovery order
            attachments: Attachment records of the same page
            placement: Placement of the page

        Returns:
            Mapping of ref key to ResolvedResource, in ref order
        """
        by_name = {
            record.name: record
            for record in attachments
            if record.download_locator
        }
        prefix = relative_prefix(placement)
        resolved: Dict[str, ResolvedResource] = {}

        for index, ref in enumerate(refs):
            if ref.key in resolved:
                continue

            if ref.kind is RefKind.ATTACHMENT:
                record = self._find_attachment(ref.key, by_name)
                if record is None:
                    self.logger.debug(f"No attachment record for image '{ref.key}', skipping")
                    continue
                locator = record.download_locator
                source_name = record.name
            else:
                locator = ref.key
                source_name = url_file_name(ref.key)

            extension = file_extension(source_name) or DEFAULT_IMAGE_EXTENSION
            name = self.pool.reserve(IMAGES_DIRECTORY, placement.name_prefix, index + 1, extension)
            resolved[ref.key] = ResolvedResource(
                key=ref.key,
                download_locator=locator,
                target_path=str(self.pool.directory(IMAGES_DIRECTORY) / name),
                local_path=f'{prefix}{IMAGES_DIRECTORY}/{name}',
                source_name=source_name
            )

        return resolved

    def remaining_attachments(
        self,
        attachments: List[AttachmentRecord],
        satisfied_keys: Iterable[str],
        diagram_names: Iterable[str]
    ) -> List[AttachmentRecord]:
        """
        Attachments still to be downloaded after the inline images.

        Images already downloaded inline and the PNG exports of diagrams are
        left out. Diagram sources are always kept.
        """
        diagram_names = set(diagram_names)
        excluded = set(satisfied_keys)
        excluded.update(f'{name}.png' for name in diagram_names)
        for name in diagram_names:
            excluded.discard(name)
            excluded.discard(f'{name}{DIAGRAM_SOURCE_EXTENSION}')

        return [
            record for record in attachments
            if record.download_locator and record.name not in excluded
        ]

    def resolve_attachments(
        self,
        remaining: List[AttachmentRecord],
        placement: PlacementDecision,
        diagram_names: Iterable[str]
    ) -> List[ResolvedResource]:
        """Decide target files for plain attachments, in their own sequence space."""
        diagram_names = set(diagram_names)
        prefix = relative_prefix(placement)
        resolved = []

        for index, record in enumerate(remaining):
            extension = file_extension(record.name)
            if not extension and record.name in diagram_names:
                extension = DIAGRAM_SOURCE_EXTENSION
            name = self.pool.reserve(ATTACHMENTS_DIRECTORY, placement.name_prefix, index + 1, extension)
            resolved.append(ResolvedResource(
                key=record.name,
                download_locator=record.download_locator,
                target_path=str(self.pool.directory(ATTACHMENTS_DIRECTORY) / name),
                local_path=f'{prefix}{ATTACHMENTS_DIRECTORY}/{name}',
                source_name=record.name
            ))

        return resolved


__all__ = [
    'ResourcePool',
    'ResourceResolver',
    'relative_prefix',
    'url_file_name'
]
