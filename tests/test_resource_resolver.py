"""Tests for resource naming and the shared resource pool."""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from exporters.resource_resolver import ResourcePool, ResourceResolver, relative_prefix, url_file_name
from models import AttachmentRecord, PlacementDecision, RefKind, ResourceRef


def _placement(base: Path, file_path: Path, prefix: str = '') -> PlacementDecision:
    return PlacementDecision(
        container_directory=str(file_path.parent),
        file_path=str(file_path),
        resource_root_directory=str(base),
        name_prefix=prefix
    )


class TestResourcePool:
    """Collision-free name reservation."""

    def test_sequence_is_zero_padded(self, tmp_path):
        pool = ResourcePool(tmp_path)

        assert pool.reserve('images', '42_', 1, '.png') == '42_001.png'
        assert pool.reserve('images', '', 12, '') == '012'

    def test_collision_with_reserved_name(self, tmp_path):
        pool = ResourcePool(tmp_path)

        assert pool.reserve('images', '', 1, '.png') == '001.png'
        assert pool.reserve('images', '', 1, '.png') == '001_1.png'
        assert pool.reserve('images', '', 1, '.png') == '001_2.png'

    def test_collision_with_existing_file(self, tmp_path):
        (tmp_path / 'attachments').mkdir()
        (tmp_path / 'attachments' / '001.pdf').write_bytes(b'old')
        pool = ResourcePool(tmp_path)

        assert pool.reserve('attachments', '', 1, '.pdf') == '001_1.pdf'

    def test_directories_have_separate_namespaces(self, tmp_path):
        pool = ResourcePool(tmp_path)

        assert pool.reserve('images', '', 1, '.png') == '001.png'
        assert pool.reserve('attachments', '', 1, '.png') == '001.png'

    def test_concurrent_reservations_never_share_a_name(self, tmp_path):
        pool = ResourcePool(tmp_path)

        with ThreadPoolExecutor(max_workers=8) as executor:
            names = list(executor.map(lambda _: pool.reserve('images', '', 1, '.png'), range(50)))

        assert len(set(names)) == 50


class TestPathHelpers:

    def test_relative_prefix_for_root_file(self, tmp_path):
        assert relative_prefix(_placement(tmp_path, tmp_path / 'Root.md')) == ''

    def test_relative_prefix_for_nested_file(self, tmp_path):
        placement = _placement(tmp_path, tmp_path / 'A' / 'B' / 'Leaf.md')

        assert relative_prefix(placement) == '../../'

    def test_url_file_name(self):
        assert url_file_name('https://h.example/img/my%20pic.jpg?version=2') == 'my pic.jpg'
        assert url_file_name('https://h.example/') == ''


class TestImageResolution:
    """Images get sequence numbers from their position on the page."""

    def test_unresolvable_refs_keep_their_position(self, tmp_path):
        resolver = ResourceResolver(ResourcePool(tmp_path))
        refs = [
            ResourceRef(RefKind.ATTACHMENT, 'missing.png'),
            ResourceRef(RefKind.URL, 'https://cdn.example.com/img/pic.jpg?x=1'),
            ResourceRef(RefKind.ATTACHMENT, 'a b.gif')
        ]
        attachments = [AttachmentRecord('a b.gif', '/download/attachments/42/a%20b.gif')]

        resolved = resolver.resolve_images(refs, attachments, _placement(tmp_path, tmp_path / 'Page.md', '42_'))

        assert list(resolved) == ['https://cdn.example.com/img/pic.jpg?x=1', 'a b.gif']
        url_image = resolved['https://cdn.example.com/img/pic.jpg?x=1']
        assert url_image.local_path == 'images/42_002.jpg'
        assert url_image.download_locator == 'https://cdn.example.com/img/pic.jpg?x=1'
        assert url_image.source_name == 'pic.jpg'
        attachment_image = resolved['a b.gif']
        assert attachment_image.local_path == 'images/42_003.gif'
        assert attachment_image.download_locator == '/download/attachments/42/a%20b.gif'
        assert Path(attachment_image.target_path) == tmp_path / 'images' / '42_003.gif'

    def test_percent_encoded_name_matches_attachment(self, tmp_path):
        resolver = ResourceResolver(ResourcePool(tmp_path))
        refs = [ResourceRef(RefKind.ATTACHMENT, 'my%20shot.png')]
        attachments = [AttachmentRecord('my shot.png', '/dl/my-shot')]

        resolved = resolver.resolve_images(refs, attachments, _placement(tmp_path, tmp_path / 'Root.md'))

        assert resolved['my%20shot.png'].source_name == 'my shot.png'

    def test_attachment_without_locator_is_ignored(self, tmp_path):
        resolver = ResourceResolver(ResourcePool(tmp_path))
        refs = [ResourceRef(RefKind.ATTACHMENT, 'x.png')]

        resolved = resolver.resolve_images(refs, [AttachmentRecord('x.png', None)], _placement(tmp_path, tmp_path / 'Root.md'))

        assert resolved == {}

    def test_default_extension(self, tmp_path):
        resolver = ResourceResolver(ResourcePool(tmp_path))
        refs = [ResourceRef(RefKind.URL, 'https://render.example.com/chart')]

        resolved = resolver.resolve_images(refs, [], _placement(tmp_path, tmp_path / 'Root.md'))

        assert resolved['https://render.example.com/chart'].local_path == 'images/001.png'

    def test_nested_page_paths_point_up(self, tmp_path):
        resolver = ResourceResolver(ResourcePool(tmp_path))
        refs = [ResourceRef(RefKind.ATTACHMENT, 'd.png')]
        placement = _placement(tmp_path, tmp_path / 'Guide' / 'Deep.md', '5_')

        resolved = resolver.resolve_images(refs, [AttachmentRecord('d.png', '/dl/d.png')], placement)

        assert resolved['d.png'].local_path == '../images/5_001.png'


class TestAttachmentResolution:
    """Plain attachments left after inline images and diagram exports."""

    def test_remaining_attachments_exclusions(self, tmp_path):
        resolver = ResourceResolver(ResourcePool(tmp_path))
        attachments = [
            AttachmentRecord('shot.png', '/dl/shot.png'),
            AttachmentRecord('Flow', '/dl/Flow'),
            AttachmentRecord('Flow.png', '/dl/Flow.png'),
            AttachmentRecord('Flow.drawio', '/dl/Flow.drawio'),
            AttachmentRecord('doc.pdf', '/dl/doc.pdf'),
            AttachmentRecord('orphan.txt', None)
        ]

        remaining = resolver.remaining_attachments(attachments, {'shot.png', 'Flow'}, ['Flow'])

        assert [record.name for record in remaining] == ['Flow', 'Flow.drawio', 'doc.pdf']

    def test_diagram_source_gets_drawio_extension(self, tmp_path):
        resolver = ResourceResolver(ResourcePool(tmp_path))
        remaining = [AttachmentRecord('Flow', '/dl/Flow'), AttachmentRecord('doc.pdf', '/dl/doc.pdf')]

        resolved = resolver.resolve_attachments(remaining, _placement(tmp_path, tmp_path / 'Root.md'), ['Flow'])

        assert [resource.local_path for resource in resolved] == ['attachments/001.drawio', 'attachments/002.pdf']
        assert [resource.source_name for resource in resolved] == ['Flow', 'doc.pdf']

    def test_attachment_sequence_independent_of_images(self, tmp_path):
        pool = ResourcePool(tmp_path)
        resolver = ResourceResolver(pool)
        placement = _placement(tmp_path, tmp_path / 'Root.md')
        resolver.resolve_images([ResourceRef(RefKind.URL, 'https://x/a.png')], [], placement)

        resolved = resolver.resolve_attachments([AttachmentRecord('a.png', '/dl/a.png')], placement, [])

        assert resolved[0].local_path == 'attachments/001.png'
