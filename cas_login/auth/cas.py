"""
CAS strategy: login redirect and service ticket validation.

Supported protocol versions:

- CAS1.0: ``/validate``, plain text answer ("yes\\n<user>\\n" / "no\\n")
- CAS2.0: ``/serviceValidate``, XML answer
- CAS3.0: ``/p3/serviceValidate``, XML answer with attributes

The profile handed to the verify function is ``{"user": <user>,
"attributes": {...}}`` with every attribute also copied to the top level
(without overriding ``user``), so any of them can serve as the username
attribute.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode, urljoin

import httpx
from defusedxml import ElementTree
from defusedxml.common import DefusedXmlException
from starlette.requests import Request

from .strategy import AuthOutcome, AuthStrategy, TicketValidationError, VerifyFunction

logger = logging.getLogger(__name__)

CAS_NAMESPACE = "{http://www.yale.edu/tp/cas}"

VALIDATE_PATHS = {
    "CAS1.0": "/validate",
    "CAS2.0": "/serviceValidate",
    "CAS3.0": "/p3/serviceValidate",
}


def parse_cas1_response(text: str) -> Optional[Dict[str, Any]]:
    lines = text.splitlines()
    if len(lines) >= 2 and lines[0].strip() == "yes":
        return {"user": lines[1].strip(), "attributes": {}}
    return None


def parse_service_response(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse a CAS 2.0/3.0 serviceResponse document.

    Returns the profile on authenticationSuccess, None on
    authenticationFailure.

    Raises:
        TicketValidationError: If the document is not a serviceResponse
    """
    try:
        root = ElementTree.fromstring(text)
    except (ElementTree.ParseError, DefusedXmlException) as exc:
        raise TicketValidationError(f"Unparseable CAS response: {exc}") from exc

    if root.tag != f"{CAS_NAMESPACE}serviceResponse":
        raise TicketValidationError(f"Unexpected CAS response root: {root.tag}")

    failure = root.find(f"{CAS_NAMESPACE}authenticationFailure")
    if failure is not None:
        logger.info(
            f"CAS ticket rejected: {failure.get('code')} {(failure.text or '').strip()}"
        )
        return None

    success = root.find(f"{CAS_NAMESPACE}authenticationSuccess")
    if success is None:
        raise TicketValidationError("CAS response has neither success nor failure")

    user = success.findtext(f"{CAS_NAMESPACE}user")
    if not user:
        raise TicketValidationError("CAS response has no user")

    attributes: Dict[str, Any] = {}
    attributes_el = success.find(f"{CAS_NAMESPACE}attributes")
    if attributes_el is not None:
        for child in attributes_el:
            key = child.tag.replace(CAS_NAMESPACE, "")
            value = (child.text or "").strip()
            # Repeated elements are multi-valued attributes
            if key in attributes:
                if not isinstance(attributes[key], list):
                    attributes[key] = [attributes[key]]
                attributes[key].append(value)
            else:
                attributes[key] = value

    profile: Dict[str, Any] = {key: value for key, value in attributes.items() if key != "user"}
    profile["user"] = user.strip()
    profile["attributes"] = attributes
    return profile


class CasStrategy(AuthStrategy):
    """
    Authenticate against a CAS server.

    Requests without a ticket are redirected to the CAS login page; requests
    carrying a ticket have it validated and the profile passed to verify.
    """

    name = "cas"

    def __init__(
        self,
        options: Any,
        verify: VerifyFunction,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        super().__init__(options, verify)
        if not options.sso_base_url:
            raise ValueError("CAS strategy requires ssoBaseURL")
        self.sso_base_url = options.sso_base_url.rstrip("/")
        self.version = options.version
        self.client = client
        self.timeout = timeout

    def service_url(self, request: Request) -> str:
        """Absolute service URL sent to CAS on login and on validation"""
        base = self.options.server_base_url or str(request.base_url)
        target = self.options.service_url or self.options.callback_path or request.url.path
        return urljoin(base.rstrip("/") + "/", target.lstrip("/"))

    def login_url(self, service: str) -> str:
        return f"{self.sso_base_url}/login?{urlencode({'service': service})}"

    def validate_endpoint(self) -> str:
        return self.options.validate_url or self.sso_base_url + VALIDATE_PATHS[self.version]

    async def _get_ticket(self, request: Request) -> Optional[str]:
        ticket = request.query_params.get("ticket")
        if not ticket and request.method == "POST":
            form = await request.form()
            ticket = form.get("ticket")
        return ticket

    async def validate_ticket(self, ticket: str, service: str) -> Optional[Dict[str, Any]]:
        """
        Validate a service ticket.

        Returns:
            The profile, or None when CAS rejects the ticket

        Raises:
            TicketValidationError: On transport errors or malformed answers
        """
        params = {"ticket": ticket, "service": service}
        try:
            if self.client is not None:
                response = await self.client.get(self.validate_endpoint(), params=params)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.validate_endpoint(), params=params)
        except httpx.HTTPError as exc:
            raise TicketValidationError(f"CAS validation request failed: {exc}") from exc

        if not response.is_success:
            raise TicketValidationError(
                f"CAS validation returned HTTP {response.status_code}"
            )

        if self.version == "CAS1.0":
            return parse_cas1_response(response.text)
        return parse_service_response(response.text)

    async def authenticate(self, request: Request, **options: Any) -> AuthOutcome:
        service = self.service_url(request)
        ticket = await self._get_ticket(request)
        if not ticket:
            return AuthOutcome.redirect(self.login_url(service))

        profile = await self.validate_ticket(ticket, service)
        if profile is None:
            return AuthOutcome.fail({"message": "Invalid CAS ticket"})

        logger.debug(f"CAS ticket validated for {profile.get('user')}")
        return await self.run_verify(request, profile)
