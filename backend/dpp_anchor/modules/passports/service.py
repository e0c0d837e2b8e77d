"""Passport lifecycle orchestration.

``PassportService`` composes the credential codec, selective disclosure,
status list and subject hashing with the ledger, content storage and issuer
identity collaborators. Steps inside one call are strictly sequential:
issue, upload, hash, register, confirm.

Usage::

    service = PassportService(ledger, storage, sessions, verifier, settings=settings)
    result = await service.create_passport(form, account)
"""

from __future__ import annotations

import asyncio
import secrets
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar
from urllib.parse import quote

from cryptography.hazmat.primitives.asymmetric import ed25519
from jsonschema.exceptions import SchemaError  # type: ignore[import-untyped]

from dpp_anchor.core.addresses import accounts_match
from dpp_anchor.core.config import Settings
from dpp_anchor.core.crypto.hashing import (
    Granularity,
    compute_subject_id_hash,
    digest,
    untp_granularity_level,
)
from dpp_anchor.core.encryption import (
    DisclosureError,
    build_verification_link_template,
    decrypt_restricted,
    generate_verification_key,
)
from dpp_anchor.core.logging import get_logger
from dpp_anchor.modules.credentials.codec import (
    CREDENTIAL_MEDIA_TYPE,
    DEFAULT_HEADER,
    CredentialFormatError,
    CredentialVerifier,
    build_signing_input,
    decode_credential,
    sign_credential,
)
from dpp_anchor.modules.credentials.did import (
    DidNotPublishedError,
    DidResolutionError,
    InvalidDidError,
    did_key_from_public_key,
    did_to_url,
    public_key_from_hex,
)
from dpp_anchor.modules.credentials.schemas import CredentialVerification
from dpp_anchor.modules.identity.base import (
    IdentityError,
    IssuerIdentity,
    IssuerIdentityProvider,
    IssuerStatus,
)
from dpp_anchor.modules.ledger.base import (
    AnchorRegistration,
    LedgerAccount,
    LedgerClient,
    PassportAnchor,
    PassportStatus,
)
from dpp_anchor.modules.passports.documents import (
    PassportInputError,
    build_annex_iii_block,
    build_passport_document,
    split_annex_iii,
    validate_annex_iii,
)
from dpp_anchor.modules.passports.history import (
    HistoryEntry,
    list_history,
    resolve_version_uri,
)
from dpp_anchor.modules.passports.schema_validation import SchemaLoadError, SchemaValidator
from dpp_anchor.modules.passports.schemas import (
    AnnexIIIExport,
    ChainPreview,
    CreatePassportFormInput,
    CreatePassportResult,
    FinalizeCreatePassportInput,
    FinalizeResult,
    PassportExport,
    PassportInput,
    PassportRecord,
    PreparedPassport,
    PreparedSession,
    RegistrationData,
    SchemaValidationDetails,
    UntpPreview,
    UpdatePassportResult,
    VerificationLink,
    VerificationReport,
)
from dpp_anchor.modules.passports.sessions import PreparedSessionStore
from dpp_anchor.modules.registry.base import ProductRegistry
from dpp_anchor.modules.status_list.manager import STATUS_LIST_CONTEXT, StatusListManager
from dpp_anchor.modules.storage.base import ContentStorage, StorageError, address_from_uri

logger = get_logger(__name__)

T = TypeVar("T")

CREDENTIALS_V2_CONTEXT = "https://www.w3.org/ns/credentials/v2"
CREDENTIALS_V1_CONTEXT = "https://www.w3.org/2018/credentials/v1"
SCHEMA_TYPE = "JsonSchema2023"
REVOKED_REASON = "Passport has been revoked on-chain"
SESSION_EXPIRED_ERROR = "Prepared data not found or expired. Please start over."
FALLBACK_NETWORKS = ("asset-hub", "westend-asset-hub")


class IssuerAuthorizationError(PermissionError):
    """The submitting account may not issue for the requested DID."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _strip_network_prefix(network: str | None) -> str:
    return (network or "").strip().removeprefix("polkadot:")


class PassportService:
    """Create, read, verify, update and revoke anchored passports."""

    def __init__(
        self,
        ledger: LedgerClient,
        storage: ContentStorage,
        sessions: PreparedSessionStore,
        verifier: CredentialVerifier,
        *,
        settings: Settings,
        identity: IssuerIdentityProvider | None = None,
        status_list: StatusListManager | None = None,
        registry: ProductRegistry | None = None,
        schema_validator: SchemaValidator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ledger = ledger
        self._storage = storage
        self._sessions = sessions
        self._verifier = verifier
        self._settings = settings
        self._identity = identity
        self._status_list = status_list
        self._registry = registry
        self._schema_validator = schema_validator
        self._clock = clock
        self._timeout = settings.collaborator_timeout_seconds

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        async with asyncio.timeout(self._timeout):
            return await awaitable

    # ------------------------------------------------------------------
    # Credential assembly
    # ------------------------------------------------------------------

    def _build_vc_payload(
        self,
        document: dict[str, Any],
        issuer_did: str,
        issuer_account: str,
        network: str | None,
    ) -> dict[str, Any]:
        """Unsigned JWT claims with the passport document as credential subject."""
        settings = self._settings
        chain_anchor = {
            **(document.get("chainAnchor") or {}),
            "@type": "BlockchainAnchor",
            "network": f"polkadot:{_strip_network_prefix(network) or settings.default_network}",
            "issuerAccount": issuer_account,
        }
        chain_anchor.setdefault("version", 1)
        subject = {**document, "chainAnchor": chain_anchor}

        product = document.get("product") or {}
        product_identifier = str(product.get("identifier") or "").strip()
        manufacturer = document.get("manufacturer") or {}
        credential_id = f"{settings.credential_id_prefix}{secrets.token_hex(16)}"
        issued = self._clock()
        issued_at = _iso(issued)

        vc: dict[str, Any] = {
            "@context": [
                CREDENTIALS_V2_CONTEXT,
                settings.untp_dpp_context_url,
                CREDENTIALS_V1_CONTEXT,
            ],
            "type": ["VerifiableCredential", "DigitalProductPassport"],
            "id": credential_id,
            "issuer": {
                "type": ["CredentialIssuer"],
                "id": issuer_did,
                "name": manufacturer.get("name") or "Issuer",
            },
            "issuanceDate": issued_at,
            "validFrom": issued_at,
            "credentialSubject": subject,
            "credentialSchema": {"id": settings.untp_schema_url, "type": SCHEMA_TYPE},
        }
        if settings.untp_schema_sha256:
            vc["schemaSha256"] = settings.untp_schema_sha256
        if product_identifier:
            vc["renderMethod"] = [
                {
                    "id": f"{settings.idr_base_url.rstrip('/')}/idr/products/"
                    f"{quote(product_identifier, safe='')}",
                    "type": "text/html",
                    "name": "Human-readable Digital Product Passport",
                }
            ]

        return {
            "iss": issuer_did,
            "sub": product_identifier,
            "nbf": int(issued.timestamp()),
            "jti": credential_id,
            "vc": vc,
        }

    async def _attach_status_entry(self, payload: dict[str, Any], issuer_did: str) -> None:
        """Best-effort status list index; issuance continues without one."""
        if self._status_list is None or not self._settings.status_list_enabled:
            return
        vc = payload["vc"]
        try:
            entry = await self._status_list.assign_index(issuer_did, payload["jti"])
        except Exception as exc:
            logger.warning("status_list_assign_failed", issuer=issuer_did, error=str(exc))
            return
        if STATUS_LIST_CONTEXT not in vc["@context"]:
            vc["@context"].append(STATUS_LIST_CONTEXT)
        vc["credentialStatus"] = entry

    async def _signer_for(self, account: LedgerAccount) -> tuple[str, ed25519.Ed25519PrivateKey]:
        """Issuer DID and signing key for server-side issuance."""
        if account.signing_key is not None:
            return account.did or did_key_from_public_key(account.public_key), account.signing_key
        if account.did and self._identity is not None:
            seed = await self._identity.get_decrypted_signing_key(account.did)
            return account.did, ed25519.Ed25519PrivateKey.from_private_bytes(seed)
        raise PassportInputError("A signing key is required to issue a passport credential.")

    async def _upload_credential(self, token: str, name: str, metadata: dict[str, str]) -> str:
        result = await self._bounded(
            self._storage.upload_text(token, {"name": name, "keyvalues": metadata})
        )
        return result.content_address

    async def _fetch_credential(self, dataset_uri: str) -> str:
        address = address_from_uri(dataset_uri)
        if not address:
            raise StorageError("Dataset URI not available for this passport")
        result = await self._bounded(self._storage.retrieve_text(address))
        return result.data

    async def _index_best_effort(
        self, token_id: str, document: dict[str, Any], issuer_did: str
    ) -> None:
        if self._registry is None:
            return
        try:
            await self._bounded(self._registry.index_passport(token_id, document, issuer_did))
        except Exception as exc:
            logger.warning("registry_index_failed", token_id=token_id, error=str(exc))

    # ------------------------------------------------------------------
    # Single-phase create / read / export
    # ------------------------------------------------------------------

    async def create_passport(
        self, data: PassportInput, account: LedgerAccount
    ) -> CreatePassportResult:
        """Issue, store and anchor a passport signed with a caller-held key."""
        granularity = data.granularity or Granularity.BATCH
        document = build_passport_document(data, granularity)
        issuer_did, signing_key = await self._signer_for(account)

        payload = self._build_vc_payload(document, issuer_did, account.address, account.network)
        await self._attach_status_entry(payload, issuer_did)
        token = sign_credential(payload, signing_key)

        cid = await self._upload_credential(
            token,
            f"dpp-{granularity.value}-{data.product_id}.jwt",
            {"format": "vc+jwt", "granularity": granularity.value, "product-id": data.product_id},
        )
        payload_hash = digest(token)
        subject_hash = compute_subject_id_hash(
            data.product_id, granularity, data.batch_number, data.serial_number
        )

        tx = await self._bounded(
            self._ledger.register_passport(
                AnchorRegistration(
                    dataset_uri=f"ipfs://{cid}",
                    payload_hash=payload_hash,
                    dataset_type=CREDENTIAL_MEDIA_TYPE,
                    granularity=granularity,
                    subject_id_hash=subject_hash,
                ),
                account,
            )
        )
        await self._bounded(self._ledger.wait_for_transaction(tx.tx_hash))
        if tx.token_id is None:
            raise StorageError("Ledger registration did not return a token id")

        await self._index_best_effort(tx.token_id, document, issuer_did)
        logger.info(
            "passport_created",
            token_id=tx.token_id,
            granularity=granularity.value,
            cid=cid,
        )
        return CreatePassportResult(
            token_id=tx.token_id,
            cid=cid,
            vc_jwt=token,
            tx_hash=tx.tx_hash,
            block_number=tx.block_number,
            granularity=granularity,
            subject_id_hash=subject_hash,
        )

    async def read_anchor(self, token_id: str) -> PassportAnchor:
        return await self._bounded(self._ledger.read_passport(token_id))

    async def read_passport(self, token_id: str, version: int | None = None) -> PassportRecord:
        """Current passport, or a historical version reached through the version chain."""
        anchor = await self.read_anchor(token_id)
        dataset_uri = anchor.dataset_uri
        resolved_version = anchor.version
        if version is not None and version != anchor.version:
            dataset_uri = await resolve_version_uri(
                self._storage, anchor.dataset_uri, anchor.version, version, timeout=self._timeout
            )
            resolved_version = version

        token = await self._fetch_credential(dataset_uri)
        decoded = decode_credential(token)
        return PassportRecord(
            token_id=token_id,
            version=resolved_version,
            dataset_uri=dataset_uri,
            anchor=anchor,
            vc_jwt=token,
            document=decoded.credential_subject,
        )

    async def passport_history(self, token_id: str, max_depth: int = 10) -> list[HistoryEntry]:
        anchor = await self.read_anchor(token_id)
        return await list_history(
            self._storage,
            anchor.dataset_uri,
            anchor.version,
            max_depth=max_depth,
            timeout=self._timeout,
        )

    async def export_passport(
        self, token_id: str, verification_key: str | None = None
    ) -> PassportExport:
        """Anchor plus credential bundle; restricted Annex III is opened when a key is given."""
        anchor = await self.read_anchor(token_id)
        token = await self._fetch_credential(anchor.dataset_uri)
        decoded = decode_credential(token)

        annex_export: AnnexIIIExport | None = None
        annex = decoded.credential_subject.get("annexIII")
        if isinstance(annex, dict):
            annex_export = AnnexIIIExport(public=annex.get("public"))
            encrypted = (annex.get("restricted") or {}).get("encrypted")
            if verification_key and encrypted:
                try:
                    annex_export.restricted_decrypted = decrypt_restricted(
                        encrypted, verification_key
                    )
                except DisclosureError as exc:
                    annex_export.restricted_decrypted = {"error": str(exc)}

        return PassportExport(
            anchor=anchor,
            jwt=token,
            header=decoded.header,
            payload=decoded.payload,
            vc=decoded.vc,
            annex_iii=annex_export,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    async def _check_status_list(
        self, verification: CredentialVerification, payload: dict[str, Any]
    ) -> None:
        if self._status_list is None or not verification.verified:
            return
        vc = payload.get("vc") or {}
        status_entry = vc.get("credentialStatus")
        credential_id = payload.get("jti") or vc.get("id")
        if not credential_id:
            return
        if not isinstance(status_entry, dict) or status_entry.get("type") != "StatusList2021Entry":
            verification.warnings.append("Credential does not include credentialStatus")
            return
        try:
            revoked = await self._status_list.check_status(str(credential_id))
        except Exception as exc:
            logger.warning("status_list_check_failed", credential_id=credential_id, error=str(exc))
            verification.warnings.append(f"Status List check failed: {exc}")
            return
        if revoked:
            verification.verified = False
            verification.errors.append("Credential has been revoked (Status List check failed)")

    async def _validate_schema(
        self, vc: dict[str, Any]
    ) -> tuple[bool, SchemaValidationDetails | None]:
        schema_ref = vc.get("credentialSchema")
        if not isinstance(schema_ref, dict) or not schema_ref.get("id"):
            return True, None
        details = SchemaValidationDetails(
            schema_url=schema_ref["id"],
            schema_type=schema_ref.get("type"),
            schema_sha256=vc.get("schemaSha256"),
        )
        if self._schema_validator is None:
            details.valid = True
            return True, details
        try:
            result = await self._schema_validator.validate(vc, schema_ref["id"])
        except (SchemaLoadError, SchemaError, TimeoutError) as exc:
            logger.warning("schema_validation_failed", schema_url=schema_ref["id"], error=str(exc))
            details.error = str(exc)
            return False, details
        details.valid = result.valid
        details.errors = result.errors
        return result.valid, details

    async def verify_passport(self, token_id: str) -> VerificationReport:
        """Signature, integrity, issuer and schema checks, each reported independently.

        A revoked anchor short-circuits before the dataset is fetched.
        """
        anchor = await self.read_anchor(token_id)
        if anchor.status is PassportStatus.REVOKED:
            return VerificationReport(
                valid=False, reason=REVOKED_REASON, schema_valid=False, anchor=anchor
            )

        token = await self._fetch_credential(anchor.dataset_uri)
        hash_matches = digest(token) == anchor.payload_hash

        try:
            verification = await self._verifier.verify(token)
        except DidNotPublishedError as exc:
            did = exc.did or "did:web:..."
            logger.warning(
                "did_web_not_hosted", token_id=token_id, did=did, document_url=exc.document_url
            )
            return VerificationReport(
                valid=False,
                reason=(
                    f"VC signature verification failed: did:web issuer {did} is not yet "
                    f"publicly accessible. The DID document must be hosted at "
                    f"{exc.document_url or did_to_url(did)}."
                ),
                hash_matches=hash_matches,
                issuer_matches=False,
                schema_valid=False,
                anchor=anchor,
                vc_jwt=token,
                vc_verification=CredentialVerification(
                    verified=False,
                    issuer=did,
                    errors=[f"DID document not found: {did}"],
                    warnings=["did:web issuer not yet hosted"],
                ),
            )
        except InvalidDidError as exc:
            logger.warning("credential_issuer_did_invalid", token_id=token_id, error=str(exc))
            return VerificationReport(
                valid=False,
                reason=f"VC signature verification failed: Invalid DID format ({exc})",
                hash_matches=False,
                issuer_matches=False,
                schema_valid=False,
                anchor=anchor,
                vc_jwt=token,
            )

        try:
            decoded = decode_credential(token)
        except CredentialFormatError as exc:
            logger.warning("credential_malformed", token_id=token_id, error=str(exc))
            return VerificationReport(
                valid=False,
                reason=f"Credential could not be decoded: {exc}",
                hash_matches=hash_matches,
                issuer_matches=False,
                schema_valid=False,
                vc_verification=verification,
                anchor=anchor,
                vc_jwt=token,
            )
        chain_anchor = decoded.credential_subject.get("chainAnchor")
        issuer_account = chain_anchor.get("issuerAccount") if isinstance(chain_anchor, dict) else None
        issuer_matches = accounts_match(issuer_account, anchor.issuer)

        await self._check_status_list(verification, decoded.payload)
        schema_valid, schema_details = await self._validate_schema(decoded.vc)

        valid = verification.verified and hash_matches and issuer_matches and schema_valid
        if not valid:
            logger.info(
                "passport_verification_failed",
                token_id=token_id,
                signature=verification.verified,
                hash_matches=hash_matches,
                issuer_matches=issuer_matches,
                schema_valid=schema_valid,
            )
        return VerificationReport(
            valid=valid,
            vc_verification=verification,
            hash_matches=hash_matches,
            issuer_matches=issuer_matches,
            schema_valid=schema_valid,
            schema_validation=schema_details,
            anchor=anchor,
            vc_jwt=token,
            document=decoded.credential_subject if verification.verified else None,
        )

    # ------------------------------------------------------------------
    # Update / revoke
    # ------------------------------------------------------------------

    async def update_passport(
        self, token_id: str, data: PassportInput, account: LedgerAccount
    ) -> UpdatePassportResult:
        """Issue a new version linked to the current one; granularity is kept from the anchor."""
        anchor = await self.read_anchor(token_id)
        granularity = anchor.granularity
        next_version = anchor.version + 1

        document = build_passport_document(data, granularity)
        document["chainAnchor"] = {
            "tokenId": token_id,
            "version": next_version,
            "previousDatasetUri": anchor.dataset_uri,
            "previousPayloadHash": anchor.payload_hash,
        }
        issuer_did, signing_key = await self._signer_for(account)
        payload = self._build_vc_payload(document, issuer_did, account.address, account.network)
        await self._attach_status_entry(payload, issuer_did)
        token = sign_credential(payload, signing_key)

        cid = await self._upload_credential(
            token,
            f"dpp-{granularity.value}-{data.product_id}-v{next_version}.jwt",
            {
                "format": "vc+jwt",
                "granularity": granularity.value,
                "product-id": data.product_id,
                "version": str(next_version),
            },
        )
        subject_hash = compute_subject_id_hash(
            data.product_id, granularity, data.batch_number, data.serial_number
        )
        tx = await self._bounded(
            self._ledger.update_dataset(
                token_id,
                f"ipfs://{cid}",
                digest(token),
                CREDENTIAL_MEDIA_TYPE,
                subject_hash,
                account,
            )
        )
        await self._bounded(self._ledger.wait_for_transaction(tx.tx_hash))
        await self._index_best_effort(token_id, document, issuer_did)

        logger.info("passport_updated", token_id=token_id, version=next_version, cid=cid)
        return UpdatePassportResult(
            token_id=token_id, cid=cid, vc_jwt=token, tx_hash=tx.tx_hash, version=next_version
        )

    async def revoke_passport(
        self, token_id: str, account: LedgerAccount, reason: str | None = None
    ) -> str:
        """Revoke on the ledger, then best-effort flip the status list bit.

        Returns the ledger transaction hash.
        """
        tx = await self._bounded(self._ledger.revoke_passport(token_id, reason, account))
        await self._bounded(self._ledger.wait_for_transaction(tx.tx_hash))

        if self._status_list is not None and self._settings.status_list_enabled:
            try:
                issuer_did = account.did or did_key_from_public_key(account.public_key)
                anchor = await self.read_anchor(token_id)
                token = await self._fetch_credential(anchor.dataset_uri)
                credential_id = decode_credential(token).credential_id
                if not credential_id:
                    raise CredentialFormatError("credential has no id (jti/vc.id)")
                address = await self._status_list.revoke_index(issuer_did, credential_id)
                logger.info("status_list_updated", token_id=token_id, list_address=address)
            except Exception as exc:
                logger.warning("status_list_revoke_failed", token_id=token_id, error=str(exc))

        logger.info("passport_revoked", token_id=token_id, tx_hash=tx.tx_hash)
        return tx.tx_hash

    # ------------------------------------------------------------------
    # Two-phase create
    # ------------------------------------------------------------------

    async def _assert_did_web_authorized(
        self, did: str, account: str, network: str | None
    ) -> IssuerIdentity:
        """Return the verified issuer identity authorizing ``account``."""
        if self._identity is None:
            raise IssuerAuthorizationError("did:web issuance is not configured")

        try:
            identity = await self._bounded(self._identity.get_issuer_identity(did))
        except (IdentityError, TimeoutError) as exc:
            raise IssuerAuthorizationError(f"Authorization check unavailable: {exc}") from exc
        if identity is None:
            raise IssuerAuthorizationError(f"Issuer not found: {did}")
        if identity.status is not IssuerStatus.VERIFIED:
            raise IssuerAuthorizationError(
                f"Issuer {did} is not verified (status: {identity.status.value})"
            )

        candidates = list(dict.fromkeys([_strip_network_prefix(network), *FALLBACK_NETWORKS]))
        last_error: Exception | None = None
        for candidate in filter(None, candidates):
            try:
                if await self._bounded(
                    self._identity.is_account_authorized(did, account, candidate)
                ):
                    return identity
            except (IdentityError, TimeoutError) as exc:
                last_error = exc
        if last_error is not None:
            raise IssuerAuthorizationError(f"Authorization check unavailable: {last_error}")
        raise IssuerAuthorizationError(f"Wallet {account} is not authorized for {did}")

    async def prepare_creation(self, form: CreatePassportFormInput) -> PreparedPassport:
        """Build the unsigned credential and park it in a prepared session.

        Raises
        ------
        PassportInputError
            Missing manufacturer identifier, bad Annex III identifiers or a
            malformed public key.
        IssuerAuthorizationError
            The did:web issuer is unknown, unverified or does not authorize
            the submitting account.
        """
        if form.manufacturer is None or not form.manufacturer.identifier:
            raise PassportInputError("Manufacturer identifier is required.")
        validate_annex_iii(form.annex_iii)
        granularity = form.granularity or Granularity.BATCH

        if form.use_did_web and form.issuer_did:
            await self._assert_did_web_authorized(
                form.issuer_did, form.issuer_address, form.network
            )
            issuer_did = form.issuer_did
            mode = "did_web"
        else:
            try:
                issuer_did = did_key_from_public_key(public_key_from_hex(form.issuer_public_key))
            except ValueError as exc:
                raise PassportInputError(str(exc)) from exc
            mode = "did_key"

        document = build_passport_document(form, granularity)
        verification_key = generate_verification_key()
        document["annexIII"] = build_annex_iii_block(
            split_annex_iii(form, issuer_did), verification_key
        )

        payload = self._build_vc_payload(document, issuer_did, form.issuer_address, form.network)
        await self._attach_status_entry(payload, issuer_did)
        header = dict(DEFAULT_HEADER)
        signing_input = build_signing_input(payload, header)
        subject_hash = compute_subject_id_hash(
            form.product_id, granularity, form.batch_number, form.serial_number
        )

        now = self._clock()
        session = PreparedSession(
            session_id=secrets.token_hex(16),
            form_input=form,
            document=document,
            signing_payload=payload,
            issuer_did=issuer_did,
            disclosure_mode=mode,
            granularity=granularity,
            created_at=now,
            expires_at=now + timedelta(seconds=self._settings.prepared_session_ttl_seconds),
        )
        await self._sessions.put(session)
        logger.info(
            "passport_prepared",
            prepared_id=session.session_id,
            issuer=issuer_did,
            mode=mode,
        )

        return PreparedPassport(
            prepared_id=session.session_id,
            signing_input=signing_input,
            header=header,
            payload=payload,
            chain_preview=ChainPreview(
                granularity=granularity,
                dataset_type=CREDENTIAL_MEDIA_TYPE,
                subject_id_hash=subject_hash,
            ),
            untp_preview=UntpPreview(
                product_id=form.product_id,
                product_name=form.product_name,
                granularity_level=untp_granularity_level(granularity),
            ),
            verification=VerificationLink(
                key=verification_key,
                link_template=build_verification_link_template(
                    self._settings.render_base_url_effective, verification_key
                ),
            ),
        )

    async def finalize_creation(self, data: FinalizeCreatePassportInput) -> FinalizeResult:
        """Consume the prepared session and store the signed credential.

        Returns ledger registration parameters; the caller submits the
        transaction with its own key.
        """
        session = await self._sessions.take(data.prepared_id)
        if session is None:
            return FinalizeResult(success=False, error=SESSION_EXPIRED_ERROR)
        if session.form_input.issuer_address != data.issuer_address:
            return FinalizeResult(success=False, error="Issuer address mismatch")

        did_web_status: str | None = None
        if session.disclosure_mode == "did_web":
            try:
                identity = await self._assert_did_web_authorized(
                    session.issuer_did, data.issuer_address, session.form_input.network
                )
            except IssuerAuthorizationError as exc:
                return FinalizeResult(success=False, error=f"Authorization check failed: {exc}")
            assert self._identity is not None
            did_web_status = identity.status.value
            try:
                seed = await self._bounded(
                    self._identity.get_decrypted_signing_key(session.issuer_did)
                )
            except (IdentityError, TimeoutError) as exc:
                return FinalizeResult(
                    success=False, error=f"Failed to decrypt private key for signing: {exc}"
                )
            token = sign_credential(
                session.signing_payload, ed25519.Ed25519PrivateKey.from_private_bytes(seed)
            )
        else:
            token = data.signed_vc_jwt.strip()
            try:
                decoded = decode_credential(token)
            except CredentialFormatError as exc:
                return FinalizeResult(success=False, error=f"VC signature invalid: {exc}")
            if decoded.payload != session.signing_payload:
                return FinalizeResult(
                    success=False, error="Signed credential does not match the prepared payload"
                )
            try:
                verification = await self._verifier.verify(token)
            except DidResolutionError as exc:
                return FinalizeResult(success=False, error=f"VC signature invalid: {exc}")
            if not verification.verified:
                return FinalizeResult(
                    success=False,
                    error=f"VC signature invalid: {', '.join(verification.errors)}",
                )

        form = session.form_input
        try:
            cid = await self._upload_credential(
                token,
                f"dpp-{session.granularity.value}-{form.product_id}.jwt",
                {
                    "format": "vc+jwt",
                    "granularity": session.granularity.value,
                    "product-id": form.product_id,
                },
            )
        except (StorageError, TimeoutError) as exc:
            logger.warning("credential_upload_failed", prepared_id=data.prepared_id, error=str(exc))
            return FinalizeResult(success=False, error=f"Failed to store credential: {exc}")

        registration = RegistrationData(
            dataset_uri=f"ipfs://{cid}",
            payload_hash=digest(token),
            dataset_type=CREDENTIAL_MEDIA_TYPE,
            granularity=session.granularity,
            subject_id_hash=compute_subject_id_hash(
                form.product_id, session.granularity, form.batch_number, form.serial_number
            ),
            cid=cid,
            issuer_did_web_status=did_web_status,
        )
        logger.info("passport_finalized", prepared_id=data.prepared_id, cid=cid)
        return FinalizeResult(success=True, registration_data=registration)
