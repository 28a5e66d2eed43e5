"""
Credential, zero-knowledge proof and anchoring collaborator.

The workflow engine only talks to the ComplianceOracle interface. The local
implementation signs with the application secret and returns deterministic
receipts. The HTTP implementation delegates to a remote service when
`ORACLE_URL` is configured.
"""
import hashlib
import hmac
import json
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Optional, TypeVar

import httpx
from loguru import logger

from app.core.config import settings
from app.core.exceptions import OracleFailure
from app.db.schema import Company, Product

ISSUER_DID = "did:web:norruva.com"
ANCHOR_CHAIN = "Polygon"
EXPLORER_URL = "https://amoy.polygonscan.com/tx"

T = TypeVar("T")


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def hash_data(data: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of `data`."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def sign(message: str, secret: Optional[str] = None) -> str:
    key = (secret or settings.secret_key).encode("utf-8")
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()


def call_oracle(operation: str, fn: Callable[..., T], *args: Any) -> T:
    """
    Runs one collaborator call. Anything it raises surfaces as OracleFailure.
    """
    try:
        return fn(*args)
    except OracleFailure:
        raise
    except Exception as e:
        raise OracleFailure(operation, e)


class ComplianceOracle(ABC):

    @abstractmethod
    def create_verifiable_credential(self, product: Product, company: Company) -> Dict[str, Any]:
        ...

    @abstractmethod
    def generate_compliance_proof(self, product: Product) -> Dict[str, Any]:
        ...

    @abstractmethod
    def verify_compliance_proof(self, proof: Dict[str, Any]) -> bool:
        ...

    @abstractmethod
    def anchor_to_polygon(self, data_hash: str) -> Dict[str, Any]:
        ...

    def close(self) -> None:
        """Releases held connections. The local oracle holds none."""


class LocalComplianceOracle(ComplianceOracle):
    """
    In-process oracle. Credentials carry an HMAC-SHA256 proof over their
    canonical payload; anchors are derived from the hash itself.
    """

    def __init__(self, secret: Optional[str] = None):
        self.secret = secret or settings.secret_key

    @staticmethod
    def credential_subject(product: Product, company: Company) -> Dict[str, Any]:
        return {
            "id": f"did:dpp:product:{product.id}",
            "type": "Product",
            "name": product.product_name,
            "gtin": product.gtin,
            "category": product.category,
            "manufacturer": company.name,
            "compliance": product.compliance,
            "materials": product.materials,
        }

    def create_verifiable_credential(self, product: Product, company: Company) -> Dict[str, Any]:
        issuance_date = datetime.utcnow().isoformat() + "Z"

        payload = {
            "@context": [
                "https://www.w3.org/2018/credentials/v1",
                "https://schema.org",
                "https://w3id.org/dpp/v1",
            ],
            "id": f"urn:uuid:{uuid.uuid4()}",
            "type": ["VerifiableCredential", "DigitalProductPassport"],
            "issuer": {"id": ISSUER_DID, "name": "Norruva Platform"},
            "issuanceDate": issuance_date,
            "credentialSubject": self.credential_subject(product, company),
        }

        proof_value = sign(hash_data(payload), self.secret)
        logger.debug(f"Issued credential {payload['id']} for product {product.id}")

        return {
            **payload,
            "proof": {
                "type": "DataIntegrityProof",
                "cryptosuite": "hmac-sha256-jcs",
                "created": issuance_date,
                "proofPurpose": "assertionMethod",
                "verificationMethod": f"{ISSUER_DID}#keys-1",
                "proofValue": proof_value,
            },
        }

    def verify_credential(self, credential: Dict[str, Any]) -> bool:
        payload = {k: v for k, v in credential.items() if k != "proof"}
        proof_value = (credential.get("proof") or {}).get("proofValue", "")
        return hmac.compare_digest(sign(hash_data(payload), self.secret), proof_value)

    def generate_compliance_proof(self, product: Product) -> Dict[str, Any]:
        # The commitment covers the compliance claims only, never the full record
        public_inputs = hash_data({
            "product_id": str(product.id),
            "compliance": product.compliance,
            "materials": product.materials,
        })
        return {
            "proof_data": sign(public_inputs, self.secret),
            "public_inputs": public_inputs,
            "is_verified": False,
            "verified_at": None,
        }

    def verify_compliance_proof(self, proof: Dict[str, Any]) -> bool:
        public_inputs = proof.get("public_inputs")
        proof_data = proof.get("proof_data")
        if not public_inputs or not proof_data:
            return False
        return hmac.compare_digest(sign(public_inputs, self.secret), proof_data)

    def anchor_to_polygon(self, data_hash: str) -> Dict[str, Any]:
        tx_hash = "0x" + hashlib.sha256(f"{ANCHOR_CHAIN}:{data_hash}".encode("utf-8")).hexdigest()
        return {
            "tx_hash": tx_hash,
            "explorer_url": f"{EXPLORER_URL}/{tx_hash}",
            "block_height": 0,
            "chain": ANCHOR_CHAIN,
        }


class HttpComplianceOracle(ComplianceOracle):
    """
    Delegates every operation to a remote oracle service.
    Non-2xx responses raise `httpx.HTTPStatusError`.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None
    ):
        self._owns_client = client is None
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = self.client.post(path, content=canonical_json(body), headers={
            "Content-Type": "application/json",
        })
        response.raise_for_status()
        return response.json()

    def create_verifiable_credential(self, product: Product, company: Company) -> Dict[str, Any]:
        return self._post("/credentials", {
            "subject": LocalComplianceOracle.credential_subject(product, company),
        })

    def generate_compliance_proof(self, product: Product) -> Dict[str, Any]:
        return self._post("/proofs", {
            "product_id": str(product.id),
            "compliance": product.compliance,
            "materials": product.materials,
        })

    def verify_compliance_proof(self, proof: Dict[str, Any]) -> bool:
        result = self._post("/proofs/verify", {"proof": proof})
        return bool(result.get("valid"))

    def anchor_to_polygon(self, data_hash: str) -> Dict[str, Any]:
        return self._post("/anchors", {"data_hash": data_hash})

    def close(self) -> None:
        # Injected clients belong to the caller
        if self._owns_client:
            self.client.close()


def build_oracle() -> ComplianceOracle:
    if settings.oracle_url:
        return HttpComplianceOracle(settings.oracle_url, settings.oracle_timeout_seconds)
    return LocalComplianceOracle()


_shared_oracle: Optional[ComplianceOracle] = None
_shared_lock = threading.Lock()


def get_oracle() -> ComplianceOracle:
    """
    Process-wide oracle. Requests, background anchoring and the startup
    resume all share one instance (and one HTTP connection pool).
    """
    global _shared_oracle
    with _shared_lock:
        if _shared_oracle is None:
            _shared_oracle = build_oracle()
        return _shared_oracle


def close_oracle() -> None:
    """Closes the shared oracle; the next get_oracle() builds a fresh one."""
    global _shared_oracle
    with _shared_lock:
        oracle, _shared_oracle = _shared_oracle, None
    if oracle is not None:
        oracle.close()
        logger.bind(component="oracle").info("Compliance oracle closed")
