"""WebAuthn registration ceremony engine.

Learn: The cryptography (attestation parsing, RP id hash, COSE keys) is
python-fido2's job — Fido2Server.register_begin / register_complete.
This engine wraps it with what the library doesn't know about:

- the per-account session (SessionBinder) that carries the challenge
  from begin to finish,
- which account may finish a given session,
- a precise error for each way a client response can be wrong
  (malformed / wrong challenge / foreign origin / rejected by fido2),
- handing the verified credential to the credential store — and only
  after every check has passed.
"""

import enum
import hmac
import json
import uuid
from datetime import timedelta
from typing import Any, Iterable, Mapping, Protocol, Union

import structlog
from fido2 import cbor
from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    AttestationConveyancePreference,
    AttestationObject,
    CollectedClientData,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from keyward.db.models import Attachment
from keyward.errors import (
    AccountMismatch,
    ChallengeMismatch,
    OriginMismatch,
    ResponseDecodeError,
    ResponseVerificationError,
)
from keyward.services.credential_service import CredentialRecord
from keyward.webauthn.sessions import CeremonyStatus, SessionBinder

logger = structlog.get_logger()


def _jsonable(value: Any) -> Any:
    """fido2 option objects → plain JSON types (bytes as base64url)."""
    if isinstance(value, Mapping):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return websafe_encode(bytes(value))
    if isinstance(value, enum.Enum):
        return value.value
    return value


class IdentityClaims(Protocol):
    """What the engine needs to know about the registering account."""

    def webauthn_id(self) -> bytes: ...

    def webauthn_name(self) -> str: ...

    def webauthn_display_name(self) -> str: ...

    def webauthn_icon(self) -> str: ...


class ExistingCredential(Protocol):
    credential_id: bytes


class CredentialSink(Protocol):
    async def store_credential(self, account_id: uuid.UUID, record: CredentialRecord) -> Any: ...


class CeremonyEngine:
    """Drives begin/finish of passkey registration for one relying party."""

    def __init__(
        self,
        binder: SessionBinder,
        rp_id: str,
        rp_name: str,
        origins: Iterable[str],
        user_verification: UserVerificationRequirement = UserVerificationRequirement.PREFERRED,
    ):
        self.binder = binder
        self.rp = PublicKeyCredentialRpEntity(id=rp_id, name=rp_name)
        self.origins = frozenset(origins)
        self.user_verification = user_verification
        self.server = Fido2Server(
            self.rp,
            attestation=AttestationConveyancePreference.NONE,
            verify_origin=self.origin_allowed,
        )
        self.server.timeout = int(binder.ttl / timedelta(milliseconds=1))

    def origin_allowed(self, origin: str) -> bool:
        return origin in self.origins

    # ─── Begin ──────────────────────────────────────────

    def begin_registration(
        self,
        account_id: uuid.UUID,
        identity: IdentityClaims,
        existing_credentials: Iterable[ExistingCredential] = (),
    ) -> tuple[dict, str]:
        """Issue a challenge and return (creation options, session reference).

        Existing credential ids go into excludeCredentials so the same
        authenticator isn't registered twice.
        """
        user = PublicKeyCredentialUserEntity(
            id=identity.webauthn_id(),
            name=identity.webauthn_name(),
            display_name=identity.webauthn_display_name(),
        )
        exclude = [
            PublicKeyCredentialDescriptor(
                type=PublicKeyCredentialType.PUBLIC_KEY, id=c.credential_id
            )
            for c in existing_credentials
        ]

        options, state = self.server.register_begin(
            user,
            exclude,
            user_verification=self.user_verification,
            resident_key_requirement=ResidentKeyRequirement.PREFERRED,
        )
        session = self.binder.bind(account_id, options.public_key.challenge, state)

        logger.info(
            "webauthn.registration_started",
            account_id=str(account_id),
            excluded=len(exclude),
        )
        return _jsonable(options), session.reference

    # ─── Finish ─────────────────────────────────────────

    async def finish_registration(
        self,
        reference: str,
        account_id: uuid.UUID,
        raw_response: Union[bytes, str, Mapping[str, Any]],
        store: CredentialSink,
        name: str = "",
    ) -> Any:
        """Verify the authenticator's response and persist the credential.

        `raw_response` is the request body as received (JSON bytes) or an
        already parsed mapping. The session is consumed first, so whatever
        happens below it is gone afterwards, including a body that isn't
        JSON at all; a failed finish has to start over with begin.
        """
        session = self.binder.consume(reference)
        try:
            if session.account_id != account_id:
                raise AccountMismatch()

            client_response = self._parse(raw_response)
            client_data, attestation = self._decode(client_response)
            self._check_client_data(client_data, session.challenge)

            try:
                auth_data = self.server.register_complete(session.state, client_response)
            except Exception as e:
                raise ResponseVerificationError() from e
        except Exception as e:
            logger.info(
                "webauthn.registration_failed",
                account_id=str(account_id),
                reason=type(e).__name__,
            )
            raise

        record = self._to_record(auth_data, attestation, client_response, name)
        stored = await store.store_credential(account_id, record)
        session.status = CeremonyStatus.COMPLETED

        logger.info(
            "webauthn.registration_completed",
            account_id=str(account_id),
            attestation=record.attestation_type,
            attachment=record.attachment.value,
        )
        return stored

    @staticmethod
    def _parse(raw_response: Union[bytes, str, Mapping[str, Any]]) -> Mapping[str, Any]:
        if isinstance(raw_response, Mapping):
            return raw_response
        try:
            parsed = json.loads(raw_response)
        except (ValueError, TypeError) as e:
            raise ResponseDecodeError() from e
        if not isinstance(parsed, Mapping):
            raise ResponseDecodeError()
        return parsed

    def _decode(self, client_response: Mapping[str, Any]) -> tuple[CollectedClientData, AttestationObject]:
        try:
            inner = client_response["response"]
            client_data = CollectedClientData(websafe_decode(inner["clientDataJSON"]))
            attestation = AttestationObject(websafe_decode(inner["attestationObject"]))
        except Exception as e:
            raise ResponseDecodeError() from e
        return client_data, attestation

    def _check_client_data(self, client_data: CollectedClientData, challenge: bytes) -> None:
        if client_data.type != CollectedClientData.TYPE.CREATE:
            raise ResponseVerificationError("Wrong client data type")
        if not hmac.compare_digest(client_data.challenge, challenge):
            raise ChallengeMismatch()
        if not self.origin_allowed(client_data.origin):
            raise OriginMismatch()

    def _to_record(
        self,
        auth_data,
        attestation: AttestationObject,
        client_response: Mapping[str, Any],
        name: str,
    ) -> CredentialRecord:
        credential_data = auth_data.credential_data
        transports = client_response["response"].get("transports") or []
        return CredentialRecord(
            credential_id=bytes(credential_data.credential_id),
            public_key=cbor.encode(credential_data.public_key),
            attestation_type=attestation.fmt,
            transports=[t for t in transports if isinstance(t, str)],
            sign_count=auth_data.counter,
            aaguid=bytes(credential_data.aaguid),
            attachment=Attachment.parse(client_response.get("authenticatorAttachment")),
            name=name,
        )
