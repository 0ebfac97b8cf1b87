"""
MOCK CIPHERTEXT ALGEBRA

Opaque encrypted-integer handles with homomorphic addition.
Plaintexts live in contract storage and are only released to the
configured decryptor, so callers see handles and nothing else.

Not a cryptosystem: it exists so that aggregation logic can be
exercised deterministically without a real FHE backend.
"""

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

MODULUS = 2**256  # plaintext space: uint256, wrapping addition

def domain_hash(*parts):
    s = "|".join(str(x) for x in parts)
    return hashlib.sha3("FHEMOCK:v1|" + s)

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# handle -> int
plaintexts = Hash()

# handle -> address that created it
creators = Hash()

metadata = Hash()
next_handle_id = Variable()

Encrypted = LogEvent('Encrypted', {
    'handle': {'type': str, 'idx': True},
    'creator': {'type': str, 'idx': True}
})

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed():
    metadata['operator'] = ctx.caller
    metadata['decryptor'] = None
    next_handle_id.set(1)

# -----------------------------------------------------------------------------
# Internals
# -----------------------------------------------------------------------------

def new_handle(value: int):
    hid = next_handle_id.get()
    next_handle_id.set(hid + 1)

    handle = domain_hash("handle", ctx.this, hid)
    plaintexts[handle] = value % MODULUS
    creators[handle] = ctx.caller

    Encrypted({'handle': handle, 'creator': ctx.caller})
    return handle

def known(handle: str):
    return isinstance(handle, str) and plaintexts[handle] is not None

# -----------------------------------------------------------------------------
# Algebra
# -----------------------------------------------------------------------------

@export
def encrypt(value: int):
    assert value >= 0, 'InvalidParameter: plaintext must be non-negative'
    return new_handle(value)

@export
def zero():
    return new_handle(0)

@export
def add(a: str, b: str):
    assert known(a) and known(b), 'InvalidParameter: unknown ciphertext handle'
    return new_handle(plaintexts[a] + plaintexts[b])

@export
def is_initialized(handle: str):
    return known(handle)

@export
def to_commitment_bytes(handle: str):
    assert known(handle), 'InvalidParameter: unknown ciphertext handle'
    return handle.lower()

# -----------------------------------------------------------------------------
# Decryption (oracle side)
# -----------------------------------------------------------------------------

@export
def set_decryptor(address: str):
    assert ctx.caller == metadata['operator'], 'NotOwner: only operator can set decryptor'
    metadata['decryptor'] = address

@export
def decrypt(handle: str):
    assert metadata['decryptor'] is not None, 'InvalidParameter: no decryptor configured'
    assert ctx.caller == metadata['decryptor'], 'NotOwner: only the decryptor can decrypt'
    assert known(handle), 'InvalidParameter: unknown ciphertext handle'
    return plaintexts[handle]
