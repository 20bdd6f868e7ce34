# pyBackupGW Module - Gateway Client
# -*- coding: utf-8 -*-
"""
 Authenticated access to the local HTTPS API of a Backup Gateway

 Class
    GatewayClient(host, port, email, password, timeout, executor)

 Functions
    login()                   # POST /api/login/Basic with the customer credentials
    get_site_info()           # /api/site_info/site_name
    get_site_master()         # /api/sitemaster
    get_aggregates()          # /api/meters/aggregates
    get_grid_status()         # /api/system_status/grid_status
    get_charge_percentage()   # /api/system_status/soe
    get_operation_config()    # /api/operation
    close()                   # Release pooled connections

 Notes
    The gateway presents a self-signed certificate for a fixed virtual name, so
    certificate validation is disabled and the TLS SNI is always SNI_HOSTNAME
    regardless of the address we connect to.

    Blocking requests calls run one at a time on a single worker thread owned by
    the client and race a timer of `timeout` seconds (asyncio.wait_for). The
    worker only sends a prepared request through the transport adapter; cookies
    and certificate details are applied to the session on the event loop after
    the call has won the race, so a call that times out changes nothing.
"""
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, NamedTuple, Optional, Tuple

import requests
import urllib3
from cryptography import x509
from cryptography.x509.oid import NameOID
from pydantic import ValidationError
from requests import PreparedRequest, Response
from requests.cookies import merge_cookies
from urllib3.exceptions import InsecureRequestWarning

from pybackupgw.exceptions import (AuthorizationFailed, GatewayConnectionError, HttpStatusError, LoginFailed,
                                   LoginInProgress, MalformedResponse, NoCredentialsConfigured, RequestTimeout)
from pybackupgw.models import Aggregates, GridStatus, OperationConfig, SiteInfo, SiteMaster, StateOfEnergy
from pybackupgw.regex import parse_relay_address

urllib3.disable_warnings(InsecureRequestWarning)

API_PREFIX = "/api"
LOGIN_PATH = "/login/Basic"
SNI_HOSTNAME = "powerwall"
DEFAULT_PORT = 443
REQUEST_TIMEOUT = 5

log = logging.getLogger(__name__)


class SniAdapter(requests.adapters.HTTPAdapter):
    """HTTPS adapter that sends a fixed server name and skips hostname matching"""

    def __init__(self, server_hostname: str = SNI_HOSTNAME, **kwargs):
        # init_poolmanager() runs inside HTTPAdapter.__init__
        self.server_hostname = server_hostname
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs['server_hostname'] = self.server_hostname
        pool_kwargs['assert_hostname'] = False
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)


class PeerCertificate(NamedTuple):
    sock: Any  # TLS socket the certificate was read from
    common_name: Optional[str]


def certificate_common_name(der: Optional[bytes]) -> Optional[str]:
    if not der:
        return None
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as exc:
        log.debug(f"Unable to parse gateway certificate: {exc}")
        return None
    names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not names:
        return None
    value = names[0].value
    return value.decode('utf-8', 'replace') if isinstance(value, bytes) else str(value)


class GatewayClient:

    def __init__(self, host: str, port: int = DEFAULT_PORT, email: Optional[str] = None,
                 password: Optional[str] = None, timeout: float = REQUEST_TIMEOUT, executor=None):
        """
        One session against one gateway endpoint.

        Args:
            host     = IPv4 address of the gateway
            port     = HTTPS port of the gateway
            email    = Customer email (optional, some firmware does not require login)
            password = Customer password (optional)
            timeout  = Seconds to wait for any single request
            executor = concurrent.futures executor for blocking calls (a private
                       single-worker pool if None, so calls never overlap)
        """
        self.host = host
        self.port = port
        self.email = email or ""
        self.password = password or ""
        self.timeout = timeout
        self.last_login: Optional[datetime] = None
        self.logging_in = False
        self.upstream_identity: Optional[str] = None
        self.session = self._init_session()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="pybackupgw")
        # Socket of the last inspected handshake. Held, not compared by id(), since
        # a new socket can reuse the id of a freed one.
        self._handshake = None

    def _init_session(self) -> requests.Session:
        session = requests.Session()
        session.mount("https://", SniAdapter(SNI_HOSTNAME))
        session.verify = False
        return session

    @property
    def base_url(self) -> str:
        return f"https://{self.host}:{self.port}{API_PREFIX}"

    @property
    def has_credentials(self) -> bool:
        return bool(self.email and self.password)

    def close(self) -> None:
        self.session.close()
        self._handshake = None
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # Transport

    def _send(self, prepared: PreparedRequest) -> Tuple[Response, Optional[PeerCertificate]]:
        # Runs in the executor: must not touch session state
        adapter = self.session.get_adapter(prepared.url)
        r = adapter.send(prepared, stream=True, timeout=self.timeout, verify=False)
        peer = self._inspect_peer(r)
        # noinspection PyStatementEffect
        r.content  # read the body so the connection goes back to the pool
        return r, peer

    def _inspect_peer(self, r: Response) -> Optional[PeerCertificate]:
        sock = getattr(getattr(r.raw, 'connection', None), 'sock', None)
        if sock is None or sock is self._handshake:
            return None
        try:
            der = sock.getpeercert(binary_form=True)
        except (AttributeError, ValueError, OSError) as exc:
            log.debug(f"Unable to read gateway certificate: {exc}")
            der = None
        return PeerCertificate(sock, certificate_common_name(der))

    def _apply_peer(self, peer: PeerCertificate) -> None:
        self._handshake = peer.sock
        identity = parse_relay_address(peer.common_name)
        if identity != self.upstream_identity:
            if identity:
                log.info(f"Gateway certificate identifies a relay for {identity}")
            self.upstream_identity = identity

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Response:
        url = f"{self.base_url}{path}"
        log.debug(f"Requesting {method} {url}")
        loop = asyncio.get_running_loop()
        prepared = self.session.prepare_request(requests.Request(method, url, json=payload))
        call = functools.partial(self._send, prepared)
        try:
            r, peer = await asyncio.wait_for(loop.run_in_executor(self._executor, call), timeout=self.timeout)
        except (asyncio.TimeoutError, requests.exceptions.Timeout):
            raise RequestTimeout(f"{path.rsplit('/', 1)[-1]} request timed out") from None
        except requests.exceptions.RequestException as exc:
            raise GatewayConnectionError(f"Unable to connect to gateway at {url}: {exc}") from exc
        merge_cookies(self.session.cookies, r.cookies)
        if peer is not None:
            self._apply_peer(peer)
        log.debug(f"Request complete with status {r.status_code}")
        return r

    @staticmethod
    def _decode_json(r: Response, path: str) -> Any:
        try:
            return r.json()
        except ValueError as exc:
            raise MalformedResponse(f"Unable to parse response from {path} as JSON") from exc

    @staticmethod
    def _decode(model, payload: Any, path: str):
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponse(f"Unexpected response from {path} ({exc.error_count()} invalid fields)") from exc

    async def _get_json(self, path: str, fail_on_status: bool = True, allow_reauth: bool = True) -> Any:
        if self.logging_in:
            log.debug(f"Suppressing {path} request because we are actively logging in")
            raise LoginInProgress(f"Suppressing {path} request because we are actively logging in")

        r = await self._request('GET', path)
        if r.status_code == 403:
            if not allow_reauth:
                raise AuthorizationFailed(f'Request "{path}" still forbidden after logging in', 403, path)
            log.warning(f"Request to {path} failed with status code Forbidden; attempting to login")
            await self.login()
            return await self._get_json(path, fail_on_status, allow_reauth=False)

        if fail_on_status and not r.ok:
            raise HttpStatusError(f'Request "{path}" failed with status code {r.status_code}', r.status_code, path)
        return self._decode_json(r, path)

    # Authentication

    async def login(self) -> None:
        """
        Log into the gateway with the customer credentials.

        Returns immediately without a request if a login is already in flight.
        """
        if self.logging_in:
            log.debug("Suppressing login attempt because we're already trying to login")
            return
        if not self.has_credentials:
            raise NoCredentialsConfigured("No credentials configured")

        self.logging_in = True
        try:
            payload = {
                "email": self.email,
                "password": self.password,
                "username": "customer",
                "force_sm_off": False,
            }
            try:
                r = await self._request('POST', LOGIN_PATH, payload)
            except RequestTimeout:
                raise RequestTimeout("Login request timed out") from None
            log.debug(f"Login request complete with status {r.status_code}")
            content = self._decode_json(r, LOGIN_PATH)
            if not isinstance(content, dict):
                raise MalformedResponse(f"Unexpected response from {LOGIN_PATH}")
            if content.get('error') is not None:
                raise LoginFailed(f"Login failed ({content['error']})")
            log.info("Successfully logged into Gateway API")
            self.last_login = datetime.now()
        finally:
            self.logging_in = False

    # Telemetry

    async def get_site_info(self) -> SiteInfo:
        path = '/site_info/site_name'
        return self._decode(SiteInfo, await self._get_json(path), path)

    async def get_site_master(self) -> SiteMaster:
        path = '/sitemaster'
        return self._decode(SiteMaster, await self._get_json(path), path)

    async def get_aggregates(self) -> Aggregates:
        path = '/meters/aggregates'
        return self._decode(Aggregates, await self._get_json(path), path)

    async def get_grid_status(self) -> GridStatus:
        path = '/system_status/grid_status'
        return self._decode(GridStatus, await self._get_json(path), path)

    async def get_charge_percentage(self) -> float:
        path = '/system_status/soe'
        return self._decode(StateOfEnergy, await self._get_json(path), path).percentage

    async def get_operation_config(self) -> OperationConfig:
        path = '/operation'
        return self._decode(OperationConfig, await self._get_json(path), path)
