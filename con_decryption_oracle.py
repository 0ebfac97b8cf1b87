"""
MOCK DECRYPTION ORACLE

Requesters register a set of ciphertext handles and receive an opaque
request id. The relayer later fulfills the request: the handles are
decrypted through the algebra contract and packed into a fixed 96-byte
record (three uint256, big-endian), and a proof is recorded for exactly
that record.

verify_proof() is the only thing requesters need to trust.
"""

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

WORD_HEX_LENGTH = 64  # 32 bytes per cleartext word

def domain_hash(*parts):
    s = "|".join(str(x) for x in parts)
    return hashlib.sha3("ORACLE:v1|" + s)

def encode_word(value: int):
    assert 0 <= value < 2**256, 'MalformedCleartext: value out of uint256 range'
    return hex(value)[2:].zfill(WORD_HEX_LENGTH)

def normalize(cleartexts: str):
    if cleartexts.startswith('0x') or cleartexts.startswith('0X'):
        cleartexts = cleartexts[2:]
    return cleartexts.lower()

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# request_id -> {'requester', 'callback', 'handles', 'fulfilled'}
requests = Hash()

# request_id -> {'cleartexts', 'proof'}
responses = Hash()

metadata = Hash()
nonce = Variable()

DecryptionRequestedEvent = LogEvent('DecryptionRequested', {
    'request_id': {'type': str, 'idx': True},
    'requester': {'type': str, 'idx': True},
    'callback': {'type': str}
})

DecryptionFulfilledEvent = LogEvent('DecryptionFulfilled', {
    'request_id': {'type': str, 'idx': True},
    'requester': {'type': str, 'idx': True},
    'proof': {'type': str}
})

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed(algebra: str):
    metadata['relayer'] = ctx.caller
    metadata['algebra'] = algebra
    nonce.set(1)

# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------

@export
def request_decryption(handles: list, callback: str):
    assert isinstance(handles, list) and len(handles) > 0, 'InvalidParameter: no handles to decrypt'

    n = nonce.get()
    nonce.set(n + 1)

    request_id = domain_hash("request", ctx.this, ctx.caller, n, ",".join(handles))
    assert requests[request_id] is None, 'ReplayAttempt: request id collision'

    requests[request_id] = {
        'requester': ctx.caller,
        'callback': callback,
        'handles': handles,
        'fulfilled': False
    }

    DecryptionRequestedEvent({
        'request_id': request_id,
        'requester': ctx.caller,
        'callback': callback
    })
    return request_id

@export
def get_request(request_id: str):
    return requests[request_id]

# -----------------------------------------------------------------------------
# Fulfillment (relayer)
# -----------------------------------------------------------------------------

@export
def fulfill(request_id: str):
    assert ctx.caller == metadata['relayer'], 'NotOwner: only relayer can fulfill'

    request = requests[request_id]
    assert request is not None, 'UnknownRequest: no such request'
    assert not request['fulfilled'], 'ReplayAttempt: request already fulfilled'

    algebra = importlib.import_module(metadata['algebra'])

    words = []
    for handle in request['handles']:
        words.append(encode_word(algebra.decrypt(handle=handle)))
    cleartexts = "".join(words)

    proof = domain_hash("proof", ctx.this, request_id, request['requester'], cleartexts)

    responses[request_id] = {'cleartexts': cleartexts, 'proof': proof}
    request['fulfilled'] = True
    requests[request_id] = request

    DecryptionFulfilledEvent({
        'request_id': request_id,
        'requester': request['requester'],
        'proof': proof
    })
    return {
        'request_id': request_id,
        'requester': request['requester'],
        'callback': request['callback'],
        'cleartexts': '0x' + cleartexts,
        'proof': proof
    }

# -----------------------------------------------------------------------------
# Verification
# -----------------------------------------------------------------------------

@export
def verify_proof(request_id: str, cleartexts: str, proof: str):
    response = responses[request_id]
    if response is None:
        return False
    return response['proof'] == proof and response['cleartexts'] == normalize(cleartexts)
