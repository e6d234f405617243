"""
Keycloak Broker Client

Talks to the Keycloak admin REST API on behalf of the OIDC provider
workflows: identity provider instances and their mappers, SSO users, group
memberships and sessions.

Every organization's identity provider is registered under the
organization slug as its alias, so the alias doubles as the lookup key for
its mappers and for the users that logged in through it.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import requests

from ..errors import BrokerAuthError, BrokerRejected, BrokerUnavailable
from ..models import ClaimDescriptor, GroupMembership, ProviderHandle

logger = logging.getLogger(__name__)

GROUP_MAPPER_TYPE = "oidc-advanced-group-idp-mapper"
USER_PAGE_SIZE = 100


class IdentityBroker(Protocol):
    """Capabilities the workflows need from the identity broker."""

    def create_provider(
        self,
        realm: str,
        alias: str,
        name: str,
        client_id: str,
        client_secret: str,
        discovery_endpoint: str,
    ) -> ProviderHandle: ...

    def create_claim_mapper(
        self, realm: str, alias: str, mapper_name: str, claim: ClaimDescriptor, group_path: str
    ) -> bool: ...

    def list_sso_users(self, realm: str, alias: str) -> List[str]: ...

    def list_user_groups(self, realm: str, user_id: str) -> List[GroupMembership]: ...

    def remove_user_from_group(self, realm: str, user_id: str, group_id: str) -> None: ...

    def logout_user(self, realm: str, user_id: str) -> None: ...

    def delete_provider(self, realm: str, alias: str) -> None: ...


class KeycloakBrokerClient:
    """
    Keycloak admin API client.

    Authenticates against the admin realm with either a password grant
    (admin user) or a client-credentials grant (service account), caches the
    token, and refreshes it once when Keycloak answers 401.

    Example usage:
        client = KeycloakBrokerClient(
            keycloak_url="https://keycloak.example.com",
            admin_user="admin",
            admin_password="changeme",
        )
        handle = client.create_provider(
            realm="cosmo",
            alias="acme",
            name="Okta",
            client_id="0oa1b2c3d4",
            client_secret="s3cr3t",
            discovery_endpoint="https://idp.example.com/.well-known/openid-configuration",
        )
    """

    def __init__(
        self,
        keycloak_url: str,
        admin_realm: str = "master",
        client_id: str = "admin-cli",
        client_secret: Optional[str] = None,
        admin_user: Optional[str] = None,
        admin_password: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            keycloak_url: Base URL of the Keycloak server
            admin_realm: Realm the admin credentials belong to
            client_id: Client used for the token grant
            client_secret: Secret for a client-credentials grant
            admin_user: Admin username for a password grant
            admin_password: Admin password for a password grant
            timeout: Per-request timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.keycloak_url = keycloak_url.rstrip("/")
        self.admin_realm = admin_realm
        self.client_id = client_id
        self.client_secret = client_secret
        self.admin_user = admin_user
        self.admin_password = admin_password
        self.timeout = timeout
        self.session = session or requests.Session()
        self._access_token: Optional[str] = None

    def _token_request_data(self) -> Dict[str, str]:
        if self.admin_user and self.admin_password:
            return {
                "grant_type": "password",
                "client_id": self.client_id,
                "username": self.admin_user,
                "password": self.admin_password,
            }
        if self.client_secret:
            return {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            }
        raise BrokerAuthError("Keycloak admin credentials are not configured")

    def _get_admin_token(self, refresh: bool = False) -> str:
        """
        Get an admin access token, reusing the cached one unless ``refresh``.

        Raises:
            BrokerAuthError: If the grant is refused
            BrokerUnavailable: If Keycloak cannot be reached
        """
        if self._access_token and not refresh:
            return self._access_token

        token_url = f"{self.keycloak_url}/realms/{self.admin_realm}/protocol/openid-connect/token"
        try:
            response = self.session.post(token_url, data=self._token_request_data(), timeout=self.timeout)
        except requests.RequestException as e:
            raise BrokerUnavailable(f"Keycloak token endpoint unreachable: {e}") from e

        if response.status_code >= 500:
            raise BrokerUnavailable("Keycloak token endpoint failed", response.status_code)
        if response.status_code != 200:
            raise BrokerAuthError("Keycloak rejected the admin credentials", response.status_code)

        token_data = self._json_body(response, "Keycloak token endpoint", BrokerAuthError)
        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise BrokerAuthError("Keycloak token response has no access_token", response.status_code)

        self._access_token = token_data["access_token"]
        logger.debug("Obtained Keycloak admin access token")
        return self._access_token

    def _api_request(
        self,
        method: str,
        path: str,
        json_data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        ignore_not_found: bool = False,
    ) -> Any:
        """
        Make an authenticated request to the admin API.

        Args:
            method: HTTP method
            path: Path below /admin/realms
            json_data: JSON request body
            params: Query parameters
            ignore_not_found: Return None on 404 instead of raising

        Returns:
            Decoded JSON body, or None when there is none

        Raises:
            BrokerUnavailable: Network error, timeout, 429 or 5xx
            BrokerAuthError: 401 after a token refresh, or 403
            BrokerRejected: Any other 4xx
        """
        url = f"{self.keycloak_url}/admin/realms{path}"
        response = self._send(method, url, json_data, params, self._get_admin_token())

        if response.status_code == 401:
            logger.info("Keycloak admin token rejected, refreshing")
            response = self._send(method, url, json_data, params, self._get_admin_token(refresh=True))

        if response.status_code == 404 and ignore_not_found:
            return None

        self._raise_for_status(response, f"{method} {path}")

        if response.status_code == 204 or not response.content:
            return None
        if response.headers.get("content-type", "").startswith("application/json"):
            return self._json_body(response, f"{method} {path}")
        return None

    def _send(
        self,
        method: str,
        url: str,
        json_data: Optional[Any],
        params: Optional[Dict[str, Any]],
        token: str,
    ) -> requests.Response:
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        try:
            return self.session.request(
                method, url, headers=headers, json=json_data, params=params, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise BrokerUnavailable(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _json_body(response: requests.Response, operation: str, error_type=BrokerRejected) -> Any:
        """
        Decode a JSON response body.

        Raises:
            error_type: If the body is not valid JSON
        """
        try:
            return response.json()
        except ValueError as e:
            raise error_type(f"{operation} returned a body that is not JSON", response.status_code) from e

    @staticmethod
    def _raise_for_status(response: requests.Response, operation: str) -> None:
        status = response.status_code
        if status < 400:
            return

        detail = f"{operation} returned {status}: {response.text[:200]}"
        if status == 429 or status >= 500:
            raise BrokerUnavailable(detail, status)
        if status in (401, 403):
            raise BrokerAuthError(detail, status)
        raise BrokerRejected(detail, status)

    def _fetch_discovery_document(self, discovery_endpoint: str) -> Dict[str, Any]:
        """
        Load the IdP's OIDC discovery document.

        Raises:
            BrokerUnavailable: If the document cannot be fetched
            BrokerRejected: If the endpoint answers 4xx or returns no endpoints
        """
        try:
            response = self.session.get(discovery_endpoint, timeout=self.timeout)
        except requests.RequestException as e:
            raise BrokerUnavailable(f"Discovery endpoint unreachable: {e}") from e

        self._raise_for_status(response, f"GET {discovery_endpoint}")
        document = self._json_body(response, f"GET {discovery_endpoint}")

        if not isinstance(document, dict) or not all(
            document.get(key) for key in ("authorization_endpoint", "token_endpoint")
        ):
            raise BrokerRejected(f"Discovery document at {discovery_endpoint} has no OIDC endpoints")
        return document

    def create_provider(
        self,
        realm: str,
        alias: str,
        name: str,
        client_id: str,
        client_secret: str,
        discovery_endpoint: str,
    ) -> ProviderHandle:
        """
        Register an OIDC identity provider in the realm.

        Re-running with the same alias and name is a no-op: a 409 for a
        provider with that display name is treated as already created.

        Raises:
            BrokerRejected: If a different provider already uses the alias
        """
        logger.info(f"Creating identity provider {alias} ({name}) in realm {realm}")
        document = self._fetch_discovery_document(discovery_endpoint)

        provider_config = {
            "clientId": client_id,
            "clientSecret": client_secret,
            "clientAuthMethod": "client_secret_post",
            "defaultScope": "openid email profile",
            "authorizationUrl": document["authorization_endpoint"],
            "tokenUrl": document["token_endpoint"],
            "validateSignature": "true",
            "useJwksUrl": "true",
            "syncMode": "FORCE",
        }
        optional_endpoints = {
            "userInfoUrl": "userinfo_endpoint",
            "logoutUrl": "end_session_endpoint",
            "jwksUrl": "jwks_uri",
            "issuer": "issuer",
        }
        for config_key, document_key in optional_endpoints.items():
            if document.get(document_key):
                provider_config[config_key] = document[document_key]

        provider_data = {
            "alias": alias,
            "displayName": name,
            "providerId": "oidc",
            "enabled": True,
            "trustEmail": True,
            "firstBrokerLoginFlowAlias": "first broker login",
            "config": provider_config,
        }

        try:
            self._api_request("POST", f"/{realm}/identity-provider/instances", json_data=provider_data)
        except BrokerRejected as e:
            if e.status_code != 409:
                raise
            existing = self._api_request("GET", f"/{realm}/identity-provider/instances/{alias}")
            if not existing or existing.get("displayName") != name:
                raise BrokerRejected(
                    f"Identity provider alias {alias} is already used by another provider", 409
                ) from e
            logger.info(f"Identity provider {alias} already exists in realm {realm}, reusing it")
            return ProviderHandle(alias=alias, display_name=name, internal_id=existing.get("internalId"))

        created = self._api_request("GET", f"/{realm}/identity-provider/instances/{alias}") or {}
        return ProviderHandle(alias=alias, display_name=name, internal_id=created.get("internalId"))

    def delete_provider(self, realm: str, alias: str) -> None:
        """Delete the realm's identity provider. A missing provider counts as deleted."""
        logger.info(f"Deleting identity provider {alias} in realm {realm}")
        self._api_request("DELETE", f"/{realm}/identity-provider/instances/{alias}", ignore_not_found=True)

    def _list_mappers(self, realm: str, alias: str) -> List[Dict[str, Any]]:
        return self._api_request("GET", f"/{realm}/identity-provider/instances/{alias}/mappers") or []

    def create_claim_mapper(
        self, realm: str, alias: str, mapper_name: str, claim: ClaimDescriptor, group_path: str
    ) -> bool:
        """
        Add a mapper that puts users carrying ``claim`` into ``group_path``.

        Mappers are looked up by name first so a retried call does not
        create a second copy.

        Returns:
            True if the mapper was created, False if it already existed
        """
        existing_names = {mapper.get("name") for mapper in self._list_mappers(realm, alias)}
        if mapper_name in existing_names:
            logger.debug(f"Mapper {mapper_name} already exists on {alias}, skipping")
            return False

        mapper_data = {
            "name": mapper_name,
            "identityProviderAlias": alias,
            "identityProviderMapper": GROUP_MAPPER_TYPE,
            "config": {
                "syncMode": "FORCE",
                "claims": json.dumps([claim.model_dump()]),
                "are.claim.values.regex": "false",
                "group": group_path,
            },
        }
        self._api_request(
            "POST", f"/{realm}/identity-provider/instances/{alias}/mappers", json_data=mapper_data
        )
        logger.info(f"Created mapper {mapper_name} on {alias}")
        return True

    def list_sso_users(self, realm: str, alias: str) -> List[str]:
        """Return the ids of all users linked to the identity provider."""
        user_ids: List[str] = []
        first = 0
        while True:
            page = self._api_request(
                "GET",
                f"/{realm}/users",
                params={"idpAlias": alias, "briefRepresentation": "true", "first": first, "max": USER_PAGE_SIZE},
            ) or []
            user_ids.extend(user["id"] for user in page if user.get("id"))
            if len(page) < USER_PAGE_SIZE:
                return user_ids
            first += USER_PAGE_SIZE

    def list_user_groups(self, realm: str, user_id: str) -> List[GroupMembership]:
        groups = self._api_request("GET", f"/{realm}/users/{user_id}/groups") or []
        try:
            return [GroupMembership(id=group["id"], path=group.get("path", "")) for group in groups]
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise BrokerRejected(f"Unexpected group listing for user {user_id}") from e

    def remove_user_from_group(self, realm: str, user_id: str, group_id: str) -> None:
        """Remove a group membership. A membership that is already gone counts as removed."""
        self._api_request("DELETE", f"/{realm}/users/{user_id}/groups/{group_id}", ignore_not_found=True)

    def logout_user(self, realm: str, user_id: str) -> None:
        """End all of the user's sessions."""
        self._api_request("POST", f"/{realm}/users/{user_id}/logout")
