import os
import logging
import secrets
from typing import Dict, Any, Optional
from datetime import datetime
from urllib.parse import urlencode

from flask import Flask, request, jsonify, redirect, session
import requests

from mshuffle.application.engine import ListeningSessionEngine
from mshuffle.crosscutting.config import SecretManager
from mshuffle.crosscutting.logging import log_error
from mshuffle.domain.entities import Authorization, Distribution
from mshuffle.domain.errors import MusicProviderError, NotFound, RateLimited, SessionError, SessionNotFound
from mshuffle.infrastructure.providers.spotify import SpotifyProvider

SPOTIFY_AUTHORIZE_URL = 'https://accounts.spotify.com/authorize'
SPOTIFY_TOKEN_URL = 'https://accounts.spotify.com/api/token'


class HTTPServer:
    """HTTP server for mshuffle: Spotify login, playlists and the listening session API."""

    def __init__(self, host: str = 'localhost', port: int = 3000, debug: bool = False,
                 engine: Optional[ListeningSessionEngine] = None,
                 secret_manager: Optional[SecretManager] = None,
                 secret_key: Optional[str] = None):
        """Initialize HTTP server."""
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.app.secret_key = secret_key or os.getenv('FLASK_SECRET_KEY') or secrets.token_hex(32)
        self.logger = logging.getLogger(__name__)

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self.secret_manager = secret_manager or SecretManager()
        self.spotify_redirect_uri = os.getenv('SPOTIFY_REDIRECT_URI', 'http://localhost:3000/callback')

        if engine is None:
            engine = ListeningSessionEngine(provider=SpotifyProvider(
                redirect_uri=self.spotify_redirect_uri,
                scope=self.secret_manager.get_spotify_scope_string(),
            ))
        self.engine = engine
        self.provider = engine.provider

        self._setup_error_handlers()
        self._setup_hooks()
        self._setup_routes()

    # -----------------------
    # helpers
    # -----------------------
    def _authorization(self) -> Optional[Authorization]:
        """Credentials of the listener from the Flask session."""
        access_token = session.get('access_token')
        if not access_token:
            return None
        return Authorization(access_token=access_token, refresh_token=session.get('refresh_token'))

    @staticmethod
    def _unauthorized():
        return jsonify({'error': 'Not logged in', 'login': '/login'}), 401

    @staticmethod
    def _distribution_json(distribution: Distribution) -> Dict[str, Any]:
        return {'distribution': [entry.to_dict() for entry in distribution]}

    def _setup_error_handlers(self) -> None:
        """Map domain errors to HTTP responses."""

        @self.app.errorhandler(SessionError)
        def session_error(e):
            return jsonify({'error': str(e)}), 409

        @self.app.errorhandler(MusicProviderError)
        def provider_error(e):
            log_error(self.logger, 'Music provider error', e, path=request.path)
            if isinstance(e, NotFound):
                return jsonify({'error': str(e)}), 404
            if isinstance(e, RateLimited):
                response = jsonify({'error': str(e), 'retry_after_ms': e.retry_after_ms})
                response.headers['Retry-After'] = str(max(1, e.retry_after_ms // 1000))
                return response, 429
            return jsonify({'error': 'Music provider failure', 'details': str(e)}), 502

    def _setup_hooks(self) -> None:
        """Carry credentials the provider refreshed on its own back into the Flask session."""

        @self.app.after_request
        def store_renewed_credentials(response):
            auth = self._authorization()
            if auth is None:
                return response

            renewed = self.provider.renewed_authorization(auth)
            if renewed is not None and renewed.access_token != auth.access_token:
                session['access_token'] = renewed.access_token
                session['refresh_token'] = renewed.refresh_token
                self.engine.reauthorize(auth, renewed)
                self.logger.info("Stored automatically refreshed credentials")
            return response

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'mshuffle HTTP Interface',
                'version': self.version,
                'logged_in': self._authorization() is not None,
                'endpoints': {
                    'health': '/health',
                    'login': '/login',
                    'oauth_callback': '/callback',
                    'logout': '/logout',
                    'refresh_token': '/refresh-token',
                    'user_info': '/user-info',
                    'playlists': '/playlists',
                    'load_playlist': '/playlists/<owner_id>/<playlist_id>',
                    'next': '/next',
                    'skip': '/skip',
                    'enjoy': '/enjoy',
                    'dislike': '/dislike',
                    'pmf': '/pmf',
                    'stats': '/stats',
                }
            }), 200

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'configuration': self.secret_manager.validate_configuration(),
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/login', methods=['GET'])
        def login():
            """Redirect to the Spotify authorization page."""
            client_id = self.secret_manager.load_env_vars().get('SPOTIFY_CLIENT_ID')
            if not client_id:
                return jsonify({'error': 'Spotify client ID not configured'}), 500

            state = secrets.token_urlsafe(16)
            session['oauth_state'] = state
            params = {
                'client_id': client_id,
                'response_type': 'code',
                'redirect_uri': self.spotify_redirect_uri,
                'scope': self.secret_manager.get_spotify_scope_string(),
                'state': state,
            }
            return redirect(f"{SPOTIFY_AUTHORIZE_URL}?{urlencode(params)}")

        @self.app.route('/callback', methods=['GET'])
        def oauth_callback():
            """OAuth callback endpoint for Spotify."""
            code = request.args.get('code')
            error = request.args.get('error')
            state = request.args.get('state')

            if error:
                self.logger.error(f"OAuth error: {error}")
                return jsonify({
                    'error': 'OAuth authorization failed',
                    'details': error
                }), 400

            expected_state = session.pop('oauth_state', None)
            if not state or state != expected_state:
                self.logger.warning("OAuth state mismatch")
                return jsonify({'error': 'State mismatch'}), 400

            if not code:
                return jsonify({'error': 'Missing authorization code'}), 400

            tokens = self._exchange_code_for_tokens(code)
            if not tokens:
                return jsonify({'error': 'Failed to exchange code for tokens'}), 502

            granted = tokens.get('scope') or ''
            if not self.secret_manager.validate_spotify_scopes(granted):
                missing = self.secret_manager.get_missing_spotify_scopes(granted)
                self.logger.warning(f"Spotify granted fewer scopes than requested, missing: {', '.join(sorted(missing))}")

            session['access_token'] = tokens['access_token']
            session['refresh_token'] = tokens.get('refresh_token')
            self.logger.info("Listener logged in")

            return jsonify({
                'status': 'success',
                'message': 'Logged in',
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/logout', methods=['GET', 'POST'])
        def logout():
            """Drop the listening session and forget the credentials."""
            auth = self._authorization()
            if auth is not None:
                self.engine.delete_session(auth)
            session.clear()
            return jsonify({'status': 'logged_out'}), 200

        @self.app.route('/refresh-token', methods=['GET', 'POST'])
        def refresh_token():
            """Refresh the listener's access token, keeping the listening session."""
            auth = self._authorization()
            if auth is None:
                return self._unauthorized()

            refreshed = self.provider.refresh_authorization(auth)
            if refreshed is None:
                return jsonify({'error': 'Could not refresh credentials', 'login': '/login'}), 401

            session['access_token'] = refreshed.access_token
            session['refresh_token'] = refreshed.refresh_token
            moved = self.engine.reauthorize(auth, refreshed)
            return jsonify({'status': 'refreshed', 'session_kept': moved}), 200

        @self.app.route('/user-info', methods=['GET'])
        def user_info():
            auth = self._authorization()
            if auth is None:
                return self._unauthorized()
            return jsonify(self.provider.get_user(auth)), 200

        @self.app.route('/playlists', methods=['GET'])
        def playlists():
            auth = self._authorization()
            if auth is None:
                return self._unauthorized()
            return jsonify({
                'playlists': [p.to_dict() for p in self.provider.list_playlists(auth)]
            }), 200

        @self.app.route('/playlists/<owner_id>/<playlist_id>', methods=['GET', 'POST'])
        def load_playlist(owner_id, playlist_id):
            """Load a playlist and start a listening session on it."""
            auth = self._authorization()
            if auth is None:
                return self._unauthorized()

            options = request.get_json(silent=True)
            if options is None:
                options = {}
            if not isinstance(options, dict):
                return jsonify({'error': 'Request body must be a JSON object'}), 400
            feature_options = options.get('features')
            if feature_options is not None and not isinstance(feature_options, dict):
                return jsonify({'error': 'features must be a JSON object keyed by feature id'}), 400

            playlist = self.provider.get_playlist(auth, owner_id, playlist_id)
            listening_session = self.engine.create_session(
                auth, playlist, feature_options=feature_options)

            return jsonify({
                'playlist': playlist.to_dict(),
                **self._distribution_json(listening_session.distribution()),
            }), 200

        def advance(action: str):
            auth = self._authorization()
            if auth is None:
                return self._unauthorized()

            track = getattr(self.engine, action)(auth)
            if track is None:
                return jsonify({'error': 'No track available'}), 404
            return jsonify({'track': track.to_dict()}), 200

        def rate(action: str):
            auth = self._authorization()
            if auth is None:
                return self._unauthorized()
            return jsonify(self._distribution_json(getattr(self.engine, action)(auth))), 200

        self.app.add_url_rule('/next', 'next', lambda: advance('next'), methods=['GET', 'POST'])
        self.app.add_url_rule('/skip', 'skip', lambda: advance('skip'), methods=['GET', 'POST'])
        self.app.add_url_rule('/enjoy', 'enjoy', lambda: rate('enjoy'), methods=['GET', 'POST'])
        self.app.add_url_rule('/dislike', 'dislike', lambda: rate('dislike'), methods=['GET', 'POST'])

        @self.app.route('/pmf', methods=['GET'])
        def pmf():
            """Current probability distribution of the listening session."""
            auth = self._authorization()
            if auth is None:
                return self._unauthorized()

            distribution = self.engine.get_distribution(auth)
            if distribution is None:
                raise SessionNotFound()
            return jsonify(self._distribution_json(distribution)), 200

        @self.app.route('/stats', methods=['GET'])
        def stats():
            return jsonify(self.engine.metrics.to_dict(active_sessions=len(self.engine.sessions))), 200

    def _exchange_code_for_tokens(self, code: str) -> Optional[Dict[str, Any]]:
        """Exchange authorization code for access and refresh tokens."""
        env_vars = self.secret_manager.load_env_vars()
        spotify_client_id = env_vars.get('SPOTIFY_CLIENT_ID')
        spotify_client_secret = env_vars.get('SPOTIFY_CLIENT_SECRET')
        if not spotify_client_id or not spotify_client_secret:
            self.logger.error("Spotify client credentials not configured")
            return None

        data = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.spotify_redirect_uri,
            'client_id': spotify_client_id,
            'client_secret': spotify_client_secret
        }

        try:
            response = requests.post(SPOTIFY_TOKEN_URL, data=data, timeout=15)
        except requests.RequestException as e:
            self.logger.error(f"Token exchange error: {e}")
            return None

        if response.status_code != 200:
            self.logger.error(f"Token exchange failed: {response.status_code} - {response.text}")
            return None

        tokens = response.json()
        return {
            'access_token': tokens.get('access_token'),
            'refresh_token': tokens.get('refresh_token'),
            'expires_in': tokens.get('expires_in'),
            'scope': tokens.get('scope'),
        }

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting mshuffle HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(engine: Optional[ListeningSessionEngine] = None,
               secret_manager: Optional[SecretManager] = None) -> Flask:
    """Create Flask app for testing."""
    server = HTTPServer(engine=engine, secret_manager=secret_manager, secret_key='test')
    return server.app
