"""Tests for the page-tree crawler using an in-memory content source."""

from pathlib import Path

import pytest

from fetchers.base_fetcher import NotFoundError
from models import NodeState
from orchestrator.crawler import Crawler


def _relative_files(base: Path):
    return sorted(path.relative_to(base).as_posix() for path in base.rglob('*') if path.is_file())


class TestCrawlLayout:
    """Placement of pages and resources in the output tree."""

    def test_records_follow_preorder(self, crawl_config, fake_fetcher):
        context = Crawler(crawl_config, fake_fetcher()).extract('1')

        assert [(r.title, r.depth, r.file_path) for r in context.records] == [
            ('Root', 0, 'Root.md'),
            ('Notes', 1, 'Notes.md'),
            ('Notes', 1, 'Notes_1.md'),
            ('Guide', 1, 'Guide/Guide.md'),
            ('Deep', 2, 'Guide/Deep.md')
        ]
        assert context.records[0].source_locator.endswith('pageId=1')

    def test_output_base_is_named_after_root(self, crawl_config, fake_fetcher):
        context = Crawler(crawl_config, fake_fetcher()).extract('1')

        output_base = Path(crawl_config['export']['output_directory']) / 'Root'
        assert Path(context.output_base) == output_base
        assert (output_base / 'Root.md').exists()
        assert (output_base / 'INDEX.md').exists()
        assert (output_base / 'Guide' / 'Deep.md').exists()

    def test_root_document_resources(self, crawl_config, fake_fetcher):
        context = Crawler(crawl_config, fake_fetcher()).extract('1')
        output_base = Path(context.output_base)
        root = (output_base / 'Root.md').read_text(encoding='utf-8')

        assert root.startswith('# Root\n\n> Author: Ann Author | Last modified: 2024-03-05 10:20\n\n---\n\n')
        # Diagram export is discovered before the plain image
        assert '![draw.io: Flow](images/001.png)' in root
        assert '![image](images/002.png)' in root
        assert '## Attachments' in root
        assert '- [Flow](attachments/001.drawio)' in root
        assert '- [manual.pdf](attachments/002.pdf)' in root
        assert 'pic.png' not in root.split('## Attachments')[1]

        assert (output_base / 'images' / '001.png').read_bytes() == b'/download/attachments/1/Flow.png'
        assert (output_base / 'images' / '002.png').read_bytes() == b'/download/attachments/1/pic.png'
        assert (output_base / 'attachments' / '001.drawio').exists()
        assert (output_base / 'attachments' / '002.pdf').exists()

    def test_nested_page_links_up_to_shared_pool(self, crawl_config, fake_fetcher):
        context = Crawler(crawl_config, fake_fetcher()).extract('1')
        output_base = Path(context.output_base)

        deep = (output_base / 'Guide' / 'Deep.md').read_text(encoding='utf-8')
        assert '![image](../images/5_001.png)' in deep
        assert (output_base / 'images' / '5_001.png').exists()

    def test_statistics(self, crawl_config, fake_fetcher):
        context = Crawler(crawl_config, fake_fetcher()).extract('1')

        assert context.stats['pages_written'] == 5
        assert context.stats['pages_skipped'] == 1
        assert context.stats['images_downloaded'] == 3
        assert context.stats['images_failed'] == 0
        assert context.stats['attachments_downloaded'] == 2


class TestCrawlFailures:
    """Failure policy: skip subtrees, degrade listings and downloads."""

    def test_failed_page_is_skipped_and_siblings_continue(self, crawl_config, fake_fetcher):
        context = Crawler(crawl_config, fake_fetcher()).extract('1')

        titles = [record.title for record in context.records]
        assert 'Broken' not in titles
        assert 'Guide' in titles
        assert context.skipped[0]['id'] == '3'
        assert context.state_of('3') is NodeState.SKIPPED
        assert context.state_of('1') is NodeState.DONE
        assert context.state_of('5') is NodeState.DONE

        index = (Path(context.output_base) / 'INDEX.md').read_text(encoding='utf-8')
        assert 'Broken' not in index
        assert '> Documents: 5' in index

    def test_failed_image_keeps_placeholder(self, crawl_config, fake_fetcher):
        fetcher = fake_fetcher(failing_downloads={'/download/attachments/1/pic.png'})
        context = Crawler(crawl_config, fetcher).extract('1')

        root = (Path(context.output_base) / 'Root.md').read_text(encoding='utf-8')
        assert '![image](pic.png)' in root
        assert '![draw.io: Flow](images/001.png)' in root
        assert context.stats['images_failed'] == 1

    def test_failed_child_listing_counts_as_leaf(self, crawl_config, fake_fetcher):
        pages = {
            '1': {'title': 'Solo', 'body': '<p>alone</p>', 'children': ['2']},
            '2': {'title': 'Hidden', 'body': '<p>x</p>'}
        }
        context = Crawler(crawl_config, fake_fetcher(pages, failing_listings={'1'})).extract('1')

        assert [record.file_path for record in context.records] == ['Solo.md']

    def test_page_visited_once(self, crawl_config, fake_fetcher):
        pages = {
            '1': {'title': 'A', 'children': ['2']},
            '2': {'title': 'B', 'children': ['1']}
        }
        fetcher = fake_fetcher(pages)
        context = Crawler(crawl_config, fetcher).extract('1', root_title='A')

        assert [record.title for record in context.records] == ['A', 'B']
        assert fetcher.fetched.count('1') == 1

    def test_unknown_root_writes_nothing(self, crawl_config, fake_fetcher):
        with pytest.raises(NotFoundError):
            Crawler(crawl_config, fake_fetcher({})).extract('99')

        assert not Path(crawl_config['export']['output_directory']).exists()

    def test_failed_root_writes_no_index(self, crawl_config, fake_fetcher):
        fetcher = fake_fetcher({'1': {'title': 'Root'}}, failing_pages={'1'})
        context = Crawler(crawl_config, fetcher).extract('1', root_title='Root')

        assert context.records == []
        assert not (Path(context.output_base) / 'INDEX.md').exists()


class TestCrawlDeterminism:
    """Re-running on an unchanged tree gives the same layout."""

    def test_same_tree_same_layout(self, tmp_path, fake_fetcher):
        first_config = {'export': {'output_directory': str(tmp_path / 'a'), 'download_workers': 4, 'progress_bars': False}}
        second_config = {'export': {'output_directory': str(tmp_path / 'b'), 'download_workers': 1, 'progress_bars': False}}

        first = Crawler(first_config, fake_fetcher()).extract('1')
        second = Crawler(second_config, fake_fetcher()).extract('1')

        assert [r.to_dict() for r in first.records] == [r.to_dict() for r in second.records]
        assert _relative_files(Path(first.output_base)) == _relative_files(Path(second.output_base))
