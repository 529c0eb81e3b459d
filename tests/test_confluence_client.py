"""Tests for the REST client and the API fetcher, with a mocked HTTP session."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
import requests

from confluence_client import ConfluenceClient
from fetchers.api_fetcher import ApiFetcher
from fetchers.base_fetcher import MalformedContentError, NotFoundError, TransportError, UnauthorizedError


def _response(status_code=200, payload=None, content=b''):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.content = content
    response.text = ''
    response.url = 'https://wiki.example.com/x'
    return response


def _client(responses, authenticator=None):
    session = MagicMock()
    session.request.side_effect = responses
    client = ConfluenceClient('https://wiki.example.com/', authenticator=authenticator, session=session)
    return client, session


class TestReauthentication:
    """A rejected session is refreshed exactly once."""

    def test_unauthorized_then_success(self):
        authenticator = MagicMock()
        client, session = _client([_response(401), _response(200, {'id': '1', 'title': 'T'})], authenticator)

        page = client.get_page('1')

        assert page['title'] == 'T'
        authenticator.authenticate.assert_called_once_with(session, force=True)
        assert client.reauthentications == 1
        assert session.request.call_count == 2

    def test_still_unauthorized_after_refresh(self):
        authenticator = MagicMock()
        client, session = _client([_response(403), _response(403)], authenticator)

        with pytest.raises(UnauthorizedError) as exc_info:
            client.get_page('1')

        assert exc_info.value.status_code == 403
        authenticator.authenticate.assert_called_once()
        assert session.request.call_count == 2

    def test_without_authenticator_no_retry(self):
        client, session = _client([_response(401)])

        with pytest.raises(UnauthorizedError):
            client.get_page('1')

        assert session.request.call_count == 1


class TestErrorMapping:

    def test_not_found(self):
        authenticator = MagicMock()
        client, _ = _client([_response(404)], authenticator)

        with pytest.raises(NotFoundError):
            client.get_page('404')

        authenticator.authenticate.assert_not_called()

    def test_server_error(self):
        client, _ = _client([_response(500)])

        with pytest.raises(TransportError) as exc_info:
            client.get_page('1')

        assert exc_info.value.status_code == 500

    def test_network_failure(self):
        client, _ = _client([requests.exceptions.ConnectionError('refused')])

        with pytest.raises(TransportError):
            client.get_page('1')

    def test_timeout(self):
        client, _ = _client([requests.exceptions.Timeout('slow')])

        with pytest.raises(TransportError):
            client.get_page('1')

    def test_invalid_json(self):
        response = _response(200)
        response.json.side_effect = ValueError('not json')
        client, _ = _client([response])

        with pytest.raises(MalformedContentError):
            client.get_page('1')


class TestRequests:

    def test_relative_locator_resolved_against_base_url(self):
        client, session = _client([_response(200, content=b'PNG')])

        assert client.download_attachment('/download/attachments/1/a.png?version=1') == b'PNG'

        method, url = session.request.call_args[0]
        assert method == 'GET'
        assert url == 'https://wiki.example.com/download/attachments/1/a.png?version=1'

    def test_absolute_locator_kept(self):
        client, _ = _client([])

        assert client.resolve_url('https://cdn.example.com/x.png') == 'https://cdn.example.com/x.png'

    def test_page_expansions_and_timeout(self):
        client, session = _client([_response(200, {'title': 'T'})])

        client.get_page('9', expand=['body.storage', 'version'])

        kwargs = session.request.call_args[1]
        assert kwargs['params'] == {'expand': 'body.storage,version'}
        assert kwargs['timeout'] == 30

    def test_children_are_paginated(self):
        responses = [
            _response(200, {'results': [{'id': '1'}, {'id': '2'}], '_links': {'next': '/more'}}),
            _response(200, {'results': [{'id': '3'}], '_links': {}})
        ]
        client, session = _client(responses)

        children = client.get_page_children('10', limit=2)

        assert [child['id'] for child in children] == ['1', '2', '3']
        assert session.request.call_args_list[1][1]['params'] == {'limit': 2, 'start': 2}

    def test_full_batch_without_next_link_keeps_paging(self):
        responses = [
            _response(200, {'results': [{'id': '1'}, {'id': '2'}]}),
            _response(200, {'results': [{'id': '3'}, {'id': '4'}], '_links': 'broken'}),
            _response(200, {'results': []})
        ]
        client, session = _client(responses)

        attachments = client.get_attachments('10', limit=2)

        assert [attachment['id'] for attachment in attachments] == ['1', '2', '3', '4']
        assert session.request.call_count == 3

    def test_verify_session(self):
        client, _ = _client([_response(200, {'username': 'ann'}), _response(200, {}), _response(401)])

        assert client.verify_session() is True
        assert client.verify_session() is False
        assert client.verify_session() is False

    def test_page_url(self):
        client, _ = _client([])

        assert client.page_url('42') == 'https://wiki.example.com/pages/viewpage.action?pageId=42'

    def test_from_config(self):
        config = {
            'confluence': {'base_url': 'https://wiki.example.com', 'verify_ssl': True},
            'advanced': {'request_timeout': 12, 'max_retries': 2}
        }

        client = ConfluenceClient.from_config(config)

        assert client.timeout == 12
        assert client.max_retries == 2
        assert client.base_url == 'https://wiki.example.com'


class TestApiFetcher:
    """Conversion of API payloads to models."""

    def _fetcher(self):
        client = MagicMock()
        client.base_url = 'https://wiki.example.com'
        return ApiFetcher({}, client=client), client

    def test_fetch_document(self):
        fetcher, client = self._fetcher()
        client.get_page.return_value = {
            'id': '5',
            'title': 'Design',
            'body': {'storage': {'value': '<p>x</p>'}},
            'version': {'when': '2024-03-05T10:20:30.000Z'},
            'history': {'createdBy': {'displayName': 'Ann'}}
        }

        node = fetcher.fetch_document('5', depth=2)

        assert node.title == 'Design'
        assert node.body == '<p>x</p>'
        assert node.author == 'Ann'
        assert node.last_modified == '2024-03-05T10:20:30.000Z'
        assert node.depth == 2
        client.get_page.assert_called_once_with('5', expand=['body.storage', 'version', 'history.createdBy'])

    def test_missing_title_is_malformed(self):
        fetcher, client = self._fetcher()
        client.get_page.return_value = {'id': '5', 'title': '  '}

        with pytest.raises(MalformedContentError):
            fetcher.fetch_document('5')

    def test_fetch_title_unknown_page(self):
        fetcher, client = self._fetcher()
        client.get_page.side_effect = NotFoundError('HTTP 404', status_code=404)

        assert fetcher.fetch_title('5') is None

    def test_list_children_skips_malformed_entries(self):
        fetcher, client = self._fetcher()
        client.get_page_children.return_value = [{'id': 11, 'title': 'A'}, {'title': 'no id'}, 'junk']

        children = fetcher.list_children('5')

        assert [(child.id, child.title) for child in children] == [('11', 'A')]

    def test_list_attachments(self):
        fetcher, client = self._fetcher()
        client.get_attachments.return_value = [
            {'title': 'a.png', '_links': {'download': '/download/attachments/5/a.png'},
             'metadata': {'mediaType': 'image/png'}},
            {'title': 'b.pdf', '_links': {}},
            {'_links': {'download': '/x'}}
        ]

        records = fetcher.list_attachments('5')

        assert [(r.name, r.download_locator, r.media_type) for r in records] == [
            ('a.png', '/download/attachments/5/a.png', 'image/png'),
            ('b.pdf', None, None)
        ]

    def test_download_counts_bytes(self):
        fetcher, client = self._fetcher()
        client.download_attachment.return_value = b'12345'

        assert fetcher.download('/dl/x') == b'12345'
        assert fetcher.stats['download_bytes'] == 5

    def test_default_logger(self):
        client = MagicMock()
        client.base_url = 'https://wiki.example.com'

        fetcher = ApiFetcher({}, client=client)

        assert fetcher.logger.name == 'confluence_extractor.fetcher.api'

    def test_concurrent_downloads_are_all_counted(self):
        fetcher, client = self._fetcher()
        client.download_attachment.return_value = b'abc'

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(fetcher.download, [f'/dl/{n}' for n in range(200)]))

        assert fetcher.stats['downloads'] == 200
        assert fetcher.stats['download_bytes'] == 600
