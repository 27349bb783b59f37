from unittest.mock import Mock

import pytest
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOauthError
from urllib3.exceptions import ReadTimeoutError

from mshuffle.domain.entities import Authorization
from mshuffle.domain.errors import NotFound, PermanentFailure, RateLimited, TemporaryFailure
from mshuffle.infrastructure.providers.spotify import PAGE_SIZE, SpotifyProvider


def _spotify_track(track_id, album_id="al1", artist_ids=("a1",), preview=True):
    return {
        'id': track_id,
        'name': f'Song {track_id}',
        'uri': f'spotify:track:{track_id}',
        'duration_ms': 200000,
        'preview_url': f'https://p.scdn.co/mp3-preview/{track_id}' if preview else None,
        'album': {'id': album_id, 'name': 'Album', 'images': [{'url': 'https://i.scdn.co/image/x'}]},
        'artists': [{'id': a, 'name': f'Artist {a}'} for a in artist_ids],
    }


class TestSpotifyProvider:
    """Contract tests for Spotify provider adapter."""

    def setup_method(self):
        """Set up test fixtures."""
        self.mock_spotify = Mock()
        self.client_factory = Mock(return_value=self.mock_spotify)
        self.oauth_manager = Mock()
        self.oauth_factory = Mock(return_value=self.oauth_manager)
        self.provider = SpotifyProvider(
            client_id="client-id",
            client_secret="client-secret",
            redirect_uri="http://localhost:3000/callback",
            client_factory=self.client_factory,
            oauth_factory=self.oauth_factory,
        )
        self.auth = Authorization(access_token="test_access_token", refresh_token="test_refresh_token")

    def test_get_similar_artists(self):
        self.mock_spotify.artist_related_artists.return_value = {
            'artists': [{'id': 'a2', 'name': 'Two'}, {'id': 'a3', 'name': 'Three'}, {'name': 'no id'}]
        }

        assert self.provider.get_similar_artists(self.auth, 'a1') == ['a2', 'a3']
        self.client_factory.assert_called_once_with('test_access_token')
        self.mock_spotify.artist_related_artists.assert_called_once_with('a1')

    def test_rate_limited(self):
        self.mock_spotify.artist_related_artists.side_effect = SpotifyException(
            429, -1, 'rate limited', headers={'Retry-After': '3'})

        with pytest.raises(RateLimited) as exc_info:
            self.provider.get_similar_artists(self.auth, 'a1')

        assert exc_info.value.retry_after_ms == 3000

    @pytest.mark.parametrize("header", [None, "soon", "Wed, 21 Oct 2026 07:28:00 GMT", "0"])
    def test_rate_limited_with_unusable_retry_after(self, header):
        headers = {'Retry-After': header} if header is not None else None
        self.mock_spotify.artist_related_artists.side_effect = SpotifyException(
            429, -1, 'rate limited', headers=headers)

        with pytest.raises(RateLimited) as exc_info:
            self.provider.get_similar_artists(self.auth, 'a1')

        assert exc_info.value.retry_after_ms == 1000

    def test_not_found(self):
        self.mock_spotify.artist_related_artists.side_effect = SpotifyException(404, -1, 'missing')

        with pytest.raises(NotFound):
            self.provider.get_similar_artists(self.auth, 'a1')

    def test_server_error_is_temporary(self):
        self.mock_spotify.artist_related_artists.side_effect = SpotifyException(503, -1, 'unavailable')

        with pytest.raises(TemporaryFailure):
            self.provider.get_similar_artists(self.auth, 'a1')

    def test_read_timeout_is_temporary(self):
        self.mock_spotify.artist_related_artists.side_effect = ReadTimeoutError(None, None, 'timed out')

        with pytest.raises(TemporaryFailure):
            self.provider.get_similar_artists(self.auth, 'a1')

    def test_expired_token_is_refreshed_and_retried(self):
        self.oauth_manager.refresh_access_token.return_value = {'access_token': 'fresh_token'}
        self.mock_spotify.artist_related_artists.side_effect = [
            SpotifyException(401, -1, 'expired'),
            {'artists': [{'id': 'a2'}]},
        ]

        assert self.provider.get_similar_artists(self.auth, 'a1') == ['a2']
        self.oauth_manager.refresh_access_token.assert_called_once_with('test_refresh_token')
        assert self.client_factory.call_args_list[-1].args == ('fresh_token',)

    def test_rejected_token_after_refresh_is_permanent(self):
        self.oauth_manager.refresh_access_token.return_value = {'access_token': 'fresh_token'}
        self.mock_spotify.artist_related_artists.side_effect = SpotifyException(401, -1, 'expired')

        with pytest.raises(PermanentFailure):
            self.provider.get_similar_artists(self.auth, 'a1')

    def test_unrefreshable_token_is_permanent(self):
        self.mock_spotify.current_user.side_effect = SpotifyException(401, -1, 'expired')
        auth = Authorization(access_token="test_access_token")

        with pytest.raises(PermanentFailure):
            self.provider.get_user(auth)
        self.oauth_factory.assert_not_called()

    def test_refresh_authorization_keeps_refresh_token(self):
        self.oauth_manager.refresh_access_token.return_value = {'access_token': 'fresh_token'}

        refreshed = self.provider.refresh_authorization(self.auth)

        assert refreshed == Authorization(access_token='fresh_token', refresh_token='test_refresh_token')

    def test_refresh_authorization_without_client_credentials(self):
        provider = SpotifyProvider(client_factory=self.client_factory, oauth_factory=self.oauth_factory)
        provider.client_id = None

        assert provider.refresh_authorization(self.auth) is None

    def test_refresh_authorization_with_invalid_response(self):
        self.oauth_manager.refresh_access_token.return_value = {}

        assert self.provider.refresh_authorization(self.auth) is None

    def test_get_playlist_paginates_and_drops_entries_without_track(self):
        self.mock_spotify.playlist.return_value = {
            'id': 'p1', 'name': 'Mix', 'description': 'desc',
            'images': [{'url': 'https://i.scdn.co/image/p'}], 'owner': {'id': 'u1'},
        }
        first_page = [{'track': _spotify_track(f't{i}')} for i in range(PAGE_SIZE - 1)]
        first_page.append({'track': None})
        second_page = [
            {'track': _spotify_track('t_last', preview=False)},
            {'track': {'id': None, 'name': 'local file'}},
        ]
        self.mock_spotify.playlist_items.side_effect = [
            {'items': first_page},
            {'items': second_page},
        ]

        playlist = self.provider.get_playlist(self.auth, 'u1', 'p1')

        assert playlist.id == 'p1'
        assert playlist.owner_id == 'u1'
        assert playlist.image == 'https://i.scdn.co/image/p'
        assert playlist.track_count == PAGE_SIZE
        assert playlist.tracks[0].album.id == 'al1'
        assert playlist.tracks[0].artist_ids == ['a1']
        assert playlist.tracks[0].is_playable
        assert not playlist.tracks[-1].is_playable
        offsets = [c.kwargs['offset'] for c in self.mock_spotify.playlist_items.call_args_list]
        assert offsets == [0, PAGE_SIZE]

    def test_list_playlists(self):
        self.mock_spotify.current_user_playlists.return_value = {
            'items': [
                {'id': 'p1', 'name': 'Mix', 'owner': {'id': 'u1'}, 'images': []},
                {'id': 'p2', 'name': 'Chill', 'owner': {'id': 'u2'}},
            ]
        }

        playlists = self.provider.list_playlists(self.auth)

        assert [p.id for p in playlists] == ['p1', 'p2']
        assert playlists[1].owner_id == 'u2'
        assert all(p.tracks is None for p in playlists)

    def test_get_user(self):
        self.mock_spotify.current_user.return_value = {
            'id': 'u1', 'display_name': 'Listener', 'country': 'SE', 'product': 'premium',
            'images': [{'url': 'https://i.scdn.co/image/u'}],
        }

        user = self.provider.get_user(self.auth)

        assert user['id'] == 'u1'
        assert user['display_name'] == 'Listener'
        assert user['image'] == 'https://i.scdn.co/image/u'

    def test_refresh_authorization_rejected_by_spotify(self):
        self.oauth_manager.refresh_access_token.side_effect = SpotifyOauthError('invalid_grant')

        assert self.provider.refresh_authorization(self.auth) is None

    def test_rejected_refresh_during_call_is_permanent(self):
        self.oauth_manager.refresh_access_token.side_effect = SpotifyOauthError('invalid_grant')
        self.mock_spotify.artist_related_artists.side_effect = SpotifyException(401, -1, 'expired')

        with pytest.raises(PermanentFailure):
            self.provider.get_similar_artists(self.auth, 'a1')
        assert self.provider.renewed_authorization(self.auth) is None

    def test_refreshed_token_is_reused_by_later_calls(self):
        self.oauth_manager.refresh_access_token.return_value = {'access_token': 'fresh_token'}
        self.mock_spotify.artist_related_artists.side_effect = [
            SpotifyException(401, -1, 'expired'),
            {'artists': [{'id': 'a2'}]},
            {'artists': [{'id': 'a3'}]},
        ]

        self.provider.get_similar_artists(self.auth, 'a1')
        assert self.provider.get_similar_artists(self.auth, 'a1') == ['a3']

        self.oauth_manager.refresh_access_token.assert_called_once()
        assert self.client_factory.call_args_list[-1].args == ('fresh_token',)
        assert self.provider.renewed_authorization(self.auth) == Authorization(
            access_token='fresh_token', refresh_token='test_refresh_token')

    def test_renewed_authorizations_are_bounded(self, monkeypatch):
        monkeypatch.setattr('mshuffle.infrastructure.providers.spotify.MAX_RENEWED_AUTHORIZATIONS', 2)
        fresh = Authorization(access_token='fresh_token')
        for i in range(3):
            self.provider._remember_renewed(Authorization(access_token=f'old_{i}'), fresh)

        assert self.provider.renewed_authorization(Authorization(access_token='old_0')) is None
        assert self.provider.renewed_authorization(Authorization(access_token='old_2')) == fresh
