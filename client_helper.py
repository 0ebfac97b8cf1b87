import hashlib
import logging

log = logging.getLogger(__name__)

# ---- Chain-constant parameters & helpers (mirror contracts) ----

WORD_HEX_LENGTH = 64
CLEARTEXT_HEX_LENGTH = 3 * WORD_HEX_LENGTH
UINT256_LIMIT = 2**256

ACCUMULATORS = ('total_resource_output', 'price_index', 'num_submissions')

def sha3_hex(s: str) -> str:
    # Matches Xian env semantics for non-hex input
    return hashlib.sha3_256(s.encode("utf-8")).hexdigest()

def domain_hash(*parts) -> str:
    s = "|".join(str(x) for x in parts)
    return sha3_hex("AGG:state:v1|" + s)

def state_commitment(handles, contract_name: str) -> str:
    """
    Recomputes the commitment con_encrypted_aggregator stores at request time.
    `handles` is the accumulator handles in order
    (total_resource_output, price_index, num_submissions); None marks an
    uninitialized accumulator.
    """
    parts = [contract_name]
    for handle in handles:
        parts.append(handle.lower() if handle else 'uninitialized')
    return domain_hash(*parts)

def encode_cleartexts(values) -> str:
    values = list(values)
    if len(values) != 3:
        raise ValueError("Expected exactly three cleartext values")

    words = []
    for value in values:
        if not 0 <= value < UINT256_LIMIT:
            raise ValueError(f"Value out of uint256 range: {value}")
        words.append(hex(value)[2:].zfill(WORD_HEX_LENGTH))
    return "0x" + "".join(words)

def decode_cleartexts(cleartexts: str):
    body = cleartexts[2:] if cleartexts[:2].lower() == "0x" else cleartexts
    if len(body) != CLEARTEXT_HEX_LENGTH:
        raise ValueError(f"Expected {CLEARTEXT_HEX_LENGTH} hex digits, got {len(body)}")
    try:
        raw = bytes.fromhex(body)
    except ValueError:
        raise ValueError("Cleartexts are not hex encoded") from None

    return tuple(
        int.from_bytes(raw[offset:offset + 32], "big")
        for offset in (0, 32, 64)
    )

def totals_from_cleartexts(cleartexts: str) -> dict:
    return dict(zip(ACCUMULATORS, decode_cleartexts(cleartexts)))

# ---- Convenience: operator-side request tracker (optional) ------------------

class PendingDecryptions:
    """
    Local record of decryption requests the operator has issued.
    A request is only worth relaying while its commitment still matches the
    live accumulators; anything else will be rejected on-chain with
    StateMismatch and should be re-requested.
    """
    def __init__(self, contract_name: str):
        self.contract_name = contract_name
        self.requests = {}

    def track(self, request_id: str, handles, batch_id: int):
        self.requests[request_id] = {
            'batch_id': batch_id,
            'commitment': state_commitment(handles, self.contract_name),
        }
        return self.requests[request_id]

    def is_live(self, request_id: str, current_handles) -> bool:
        entry = self.requests.get(request_id)
        if entry is None:
            return False
        return entry['commitment'] == state_commitment(current_handles, self.contract_name)

    def stale(self, current_handles):
        return [rid for rid in self.requests if not self.is_live(rid, current_handles)]

    def complete(self, request_id: str):
        return self.requests.pop(request_id, None)

# ---- Relayer ----------------------------------------------------------------

class DecryptionRelayer:
    """
    Carries a decryption response from the oracle to the requesting contract.

    `oracle` and `aggregator` are contract proxies as returned by
    ContractingClient.get_contract(). The relayer must be the account the
    oracle was deployed by.
    """
    def __init__(self, oracle, signer: str):
        self.oracle = oracle
        self.signer = signer

    def fulfill(self, request_id: str, environment=None) -> dict:
        log.info("Fulfilling decryption request %s", request_id)
        return self.oracle.fulfill(
            request_id=request_id,
            signer=self.signer,
            environment=environment or {},
        )

    def deliver(self, aggregator, response: dict, environment=None) -> dict:
        log.info("Delivering cleartexts for %s to %s", response['request_id'], response['requester'])
        result = aggregator.on_decryption_callback(
            request_id=response['request_id'],
            cleartexts=response['cleartexts'],
            proof=response['proof'],
            signer=self.signer,
            environment=environment or {},
        )
        log.info(
            "Batch %s revealed: resource=%s price=%s submissions=%s",
            result['batch_id'],
            result['total_resource_output'],
            result['price_index'],
            result['num_submissions'],
        )
        return result

    def relay(self, aggregator, request_id: str, environment=None) -> dict:
        return self.deliver(aggregator, self.fulfill(request_id, environment), environment)
