import base64
import os
import logging
import secrets
import time
from typing import Dict, Any, Optional
from datetime import datetime
from urllib.parse import urlencode

from flask import Flask, request, jsonify, redirect
import requests

from whiplash.application.scan import LibraryScanner
from whiplash.crosscutting.config import ConfigError, SecretManager, get_secret_manager
from whiplash.domain.errors import AuthenticationMissing, ProviderFetchFailure
from whiplash.domain.ports import CatalogProvider
from whiplash.infrastructure.credentials import StaticCredentials
from whiplash.infrastructure.providers.spotify import SpotifyCatalogProvider


AUTHORIZE_URL = 'https://accounts.spotify.com/authorize'
TOKEN_URL = 'https://accounts.spotify.com/api/token'

ACCESS_COOKIE = 'sp_access_token'
REFRESH_COOKIE = 'sp_refresh_token'
STATE_COOKIE = 'spotify_auth_state'

STATE_MAX_AGE = 10 * 60
REFRESH_MAX_AGE = 30 * 24 * 60 * 60


class TokenExchangeError(Exception):
    """The authorization code could not be exchanged for tokens."""


class HTTPServer:
    """HTTP server exposing the OAuth flow and the library scan."""

    def __init__(self, host: str = 'localhost', port: int = 3000, debug: bool = False,
                 catalog: Optional[CatalogProvider] = None,
                 secret_manager: Optional[SecretManager] = None):
        """Initialize HTTP server.

        Args:
            host: Interface to bind
            port: Port to bind
            debug: Flask debug mode
            catalog: Catalog provider used for scans; Spotify by default
            secret_manager: Source of the Spotify client credentials
        """
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self.catalog = catalog or SpotifyCatalogProvider()
        self.secret_manager = secret_manager
        self.fetch_workers = int(os.getenv('WHIPLASH_FETCH_WORKERS', '1'))
        # Secure cookies only behind https
        self.secure_cookies = os.getenv('WHIPLASH_SECURE_COOKIES', '0') == '1'

        self._setup_routes()

    def _client_config(self) -> Dict[str, Optional[str]]:
        manager = self.secret_manager or get_secret_manager()
        return manager.get_spotify_client_config()

    @staticmethod
    def _origin() -> str:
        host = request.headers.get('Host', 'localhost')
        proto = request.headers.get('X-Forwarded-Proto', 'http')
        return f"{proto}://{host}"

    def _redirect_uri(self, configured: Optional[str] = None) -> str:
        return configured or f"{self._origin()}/api/auth/callback"

    def _set_cookie(self, response, name: str, value: str, max_age: int) -> None:
        response.set_cookie(
            name, value,
            max_age=max_age,
            httponly=True,
            samesite='Lax',
            secure=self.secure_cookies,
            path='/',
        )

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            return jsonify({
                'service': 'Whiplash HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'login': '/api/auth/login',
                    'oauth_callback': '/api/auth/callback',
                    'session': '/api/auth/me',
                    'scan': '/api/spotify/artists'
                }
            }), 200

        @self.app.route('/api/auth/login', methods=['GET'])
        def login():
            """Redirect to Spotify's consent page with a fresh state cookie."""
            try:
                config = self._client_config()
            except ConfigError as e:
                self.logger.error(f"Spotify login not configured: {e}")
                return jsonify({'error': 'Spotify client ID not configured'}), 500

            manager = self.secret_manager or get_secret_manager()
            state = secrets.token_hex(16)
            params = {
                'response_type': 'code',
                'client_id': config['client_id'],
                'scope': manager.get_spotify_scope_string(),
                'redirect_uri': self._redirect_uri(config.get('redirect_uri')),
                'state': state,
            }

            response = redirect(f"{AUTHORIZE_URL}?{urlencode(params)}")
            self._set_cookie(response, STATE_COOKIE, state, STATE_MAX_AGE)
            return response

        @self.app.route('/api/auth/callback', methods=['GET'])
        def oauth_callback():
            """Exchange the authorization code and store tokens in cookies."""
            code = request.args.get('code')
            state = request.args.get('state')
            stored_state = request.cookies.get(STATE_COOKIE)
            origin = self._origin()

            if not code or not state or not stored_state or state != stored_state:
                self.logger.warning("OAuth callback rejected: state mismatch or missing code")
                return redirect(f"{origin}/?error=auth_state")

            try:
                config = self._client_config()
                tokens = self._exchange_code_for_tokens(
                    code, self._redirect_uri(config.get('redirect_uri')), config
                )
            except (ConfigError, TokenExchangeError) as e:
                self.logger.error(f"OAuth callback error: {e}")
                return jsonify({'error': str(e)}), 500

            response = redirect(f"{origin}/")
            expires_in = int(tokens.get('expires_in') or 3600)
            self._set_cookie(response, ACCESS_COOKIE, tokens['access_token'], max(60, expires_in - 30))
            if tokens.get('refresh_token'):
                self._set_cookie(response, REFRESH_COOKIE, tokens['refresh_token'], REFRESH_MAX_AGE)
            response.delete_cookie(STATE_COOKIE, path='/')

            manager = self.secret_manager or get_secret_manager()
            granted = tokens.get('scope')
            if granted is not None and not manager.validate_spotify_scopes(granted):
                missing = sorted(manager.get_missing_spotify_scopes(granted))
                self.logger.warning(f"Spotify granted fewer scopes than requested, missing: {', '.join(missing)}")

            try:
                manager.save_spotify_tokens(
                    tokens['access_token'],
                    tokens.get('refresh_token'),
                    expires_at=time.time() + expires_in,
                )
            except ConfigError as e:
                self.logger.warning(f"Could not save tokens for CLI use: {e}")

            self.logger.info("OAuth tokens stored in session cookies")
            return response

        @self.app.route('/api/auth/me', methods=['GET'])
        def session_info():
            return jsonify({
                'hasAccessToken': bool(request.cookies.get(ACCESS_COOKIE)),
                'hasRefreshToken': bool(request.cookies.get(REFRESH_COOKIE)),
            }), 200

        @self.app.route('/api/spotify/artists', methods=['GET'])
        def scan_artists():
            """Run a full library scan and return the snapshot."""
            scanner = LibraryScanner(
                credentials=StaticCredentials(request.cookies.get(ACCESS_COOKIE)),
                catalog=self.catalog,
                fetch_workers=self.fetch_workers,
            )
            try:
                result = scanner.scan()
            except AuthenticationMissing:
                return jsonify({'error': 'not_authenticated'}), 401
            except ProviderFetchFailure as e:
                self.logger.error(f"Scan failed: {e}")
                return jsonify({'error': str(e), 'status': e.status}), 502

            response = jsonify(result.snapshot.to_json())
            response.headers['Cache-Control'] = 'no-store'
            return response, 200

    def _exchange_code_for_tokens(self, code: str, redirect_uri: str,
                                  config: Dict[str, Optional[str]]) -> Dict[str, Any]:
        """Exchange authorization code for access and refresh tokens."""
        basic = base64.b64encode(f"{config['client_id']}:{config['client_secret']}".encode()).decode()

        try:
            response = requests.post(
                TOKEN_URL,
                data={
                    'grant_type': 'authorization_code',
                    'code': code,
                    'redirect_uri': redirect_uri,
                },
                headers={'Authorization': f'Basic {basic}'},
                timeout=15,
            )
        except requests.exceptions.RequestException as e:
            raise TokenExchangeError(f"Token exchange failed: {e}") from e

        if response.status_code != 200:
            raise TokenExchangeError(f"Token exchange failed: {response.status_code} {response.text}")

        tokens = response.json()
        if not tokens.get('access_token'):
            raise TokenExchangeError("Token exchange failed: no access_token in response")
        return tokens

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting Whiplash HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(catalog: Optional[CatalogProvider] = None,
               secret_manager: Optional[SecretManager] = None) -> Flask:
    """Create Flask app for testing."""
    server = HTTPServer(catalog=catalog, secret_manager=secret_manager)
    return server.app
