"""
ENCRYPTED BATCH AGGREGATOR

Providers submit ciphertext handles into the open batch; three running
accumulators grow by homomorphic addition:
  - total_resource_output += resource delta
  - price_index           += price delta
  - num_submissions       += Enc(1)

Totals are revealed through an external decryption oracle in two steps:
  1. request_decryption() snapshots
       commitment = H(self | handle_1 | handle_2 | handle_3)
     and stores it under the oracle-issued request id.
  2. on_decryption_callback() recomputes the commitment from live state,
     and only accepts cleartexts when it matches, the oracle proof checks
     out and the request was never processed before.

Submissions are never blocked while a request is pending. A callback for
state that has since changed fails with StateMismatch instead.
"""

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

NULL_ADDRESS = '0' * 64

ACCUMULATORS = ['total_resource_output', 'price_index', 'num_submissions']

ACTION_SUBMIT = 'submit'
ACTION_REQUEST = 'request'

CALLBACK_NAME = 'on_decryption_callback'

WORD_HEX_LENGTH = 64                        # one uint256, big-endian
CLEARTEXT_HEX_LENGTH = 3 * WORD_HEX_LENGTH  # 96 bytes
HEX_DIGITS = '0123456789abcdef'

def domain_hash(*parts):
    s = "|".join(str(x) for x in parts)
    return hashlib.sha3("AGG:state:v1|" + s)

def is_null_address(address: str):
    return address is None or address.strip() == '' or address == NULL_ADDRESS

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# name, owner, algebra, oracle, cooldown_seconds, paused
metadata = Hash()

# address -> bool
providers = Hash(default_value=False)

# (address, action) -> datetime of last accepted action
last_action_time = Hash()

# accumulator name -> ciphertext handle
accumulators = Hash()

batch_id = Variable()
batch_open = Variable()

# request_id -> {'batch_id', 'state_commitment', 'processed', 'requested_at'}
decryption_contexts = Hash()

# request_id -> decrypted totals
revealed_totals = Hash()

# Events
OwnershipTransferredEvent = LogEvent('OwnershipTransferred', {
    'old': {'type': str, 'idx': True},
    'new': {'type': str, 'idx': True}
})

ProviderAddedEvent = LogEvent('ProviderAdded', {
    'addr': {'type': str, 'idx': True}
})

ProviderRemovedEvent = LogEvent('ProviderRemoved', {
    'addr': {'type': str, 'idx': True}
})

PausedEvent = LogEvent('Paused', {
    'addr': {'type': str, 'idx': True}
})

UnpausedEvent = LogEvent('Unpaused', {
    'addr': {'type': str, 'idx': True}
})

CooldownSetEvent = LogEvent('CooldownSet', {
    'old': {'type': int},
    'new': {'type': int}
})

BatchOpenedEvent = LogEvent('BatchOpened', {
    'batch_id': {'type': int, 'idx': True}
})

BatchClosedEvent = LogEvent('BatchClosed', {
    'batch_id': {'type': int, 'idx': True}
})

DataSubmittedEvent = LogEvent('DataSubmitted', {
    'provider': {'type': str, 'idx': True},
    'batch_id': {'type': int, 'idx': True},
    'resource_handle': {'type': str},
    'price_handle': {'type': str}
})

DecryptionRequestedEvent = LogEvent('DecryptionRequested', {
    'request_id': {'type': str, 'idx': True},
    'batch_id': {'type': int, 'idx': True},
    'commitment': {'type': str}
})

DecryptionCompletedEvent = LogEvent('DecryptionCompleted', {
    'request_id': {'type': str, 'idx': True},
    'batch_id': {'type': int, 'idx': True},
    'total_resource_output': {'type': int},
    'price_index': {'type': int},
    'num_submissions': {'type': int}
})

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed(algebra: str, oracle: str, cooldown_seconds: int):
    assert cooldown_seconds > 0, 'InvalidParameter: cooldown must be positive'

    metadata['name'] = "Encrypted Batch Aggregator"
    metadata['owner'] = ctx.caller
    metadata['algebra'] = algebra
    metadata['oracle'] = oracle
    metadata['cooldown_seconds'] = cooldown_seconds
    metadata['paused'] = False

    batch_id.set(0)
    batch_open.set(False)

# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

def require_owner():
    assert ctx.caller == metadata['owner'], 'NotOwner: caller is not the owner'

def require_not_paused():
    assert not metadata['paused'], 'Paused: aggregator is paused'

def cooldown_expires_at(address: str, action: str):
    last = last_action_time[address, action]
    if last is None:
        return None
    return last + datetime.timedelta(seconds=metadata['cooldown_seconds'])

def require_cooldown_elapsed(action: str):
    expires = cooldown_expires_at(ctx.caller, action)
    assert expires is None or now >= expires, 'CooldownActive: try again after ' + str(expires)

def record_action(action: str):
    # Only called once every other gate of the calling operation has passed.
    last_action_time[ctx.caller, action] = now

# -----------------------------------------------------------------------------
# Collaborators
# -----------------------------------------------------------------------------

def algebra_contract():
    return importlib.import_module(metadata['algebra'])

def oracle_contract():
    return importlib.import_module(metadata['oracle'])

def is_initialized(fhe, handle: str):
    return handle is not None and fhe.is_initialized(handle=handle)

def current_handles():
    return [accumulators[name] for name in ACCUMULATORS]

def compute_state_commitment(fhe):
    parts = [ctx.this]
    for handle in current_handles():
        if is_initialized(fhe, handle):
            parts.append(fhe.to_commitment_bytes(handle=handle))
        else:
            parts.append('uninitialized')
    return domain_hash(*parts)

def decode_cleartexts(cleartexts: str):
    body = cleartexts
    if body.startswith('0x') or body.startswith('0X'):
        body = body[2:]
    body = body.lower()

    assert len(body) == CLEARTEXT_HEX_LENGTH, 'MalformedCleartext: expected 96 bytes'
    assert all(c in HEX_DIGITS for c in body), 'MalformedCleartext: not hex encoded'

    values = []
    for i in range(3):
        values.append(int(body[i * WORD_HEX_LENGTH:(i + 1) * WORD_HEX_LENGTH], 16))
    return values

# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------

@export
def get_metadata():
    return {
        'name': metadata['name'],
        'owner': metadata['owner'],
        'algebra': metadata['algebra'],
        'oracle': metadata['oracle'],
        'cooldown_seconds': metadata['cooldown_seconds'],
        'paused': metadata['paused']
    }

@export
def is_available():
    return not metadata['paused']

@export
def get_owner():
    return metadata['owner']

@export
def is_provider(address: str):
    return providers[address]

@export
def is_paused():
    return metadata['paused']

@export
def get_cooldown_remaining(address: str, action: str):
    expires = cooldown_expires_at(address, action)
    if expires is None or now >= expires:
        return 0
    return int((expires - now).seconds)

@export
def get_batch():
    return {'batch_id': batch_id.get(), 'open': batch_open.get()}

@export
def get_accumulators():
    return {name: accumulators[name] for name in ACCUMULATORS}

@export
def get_state_commitment():
    return compute_state_commitment(algebra_contract())

@export
def get_decryption_context(request_id: str):
    return decryption_contexts[request_id]

@export
def get_revealed_totals(request_id: str):
    return revealed_totals[request_id]

# -----------------------------------------------------------------------------
# Access control
# -----------------------------------------------------------------------------

@export
def transfer_ownership(new_owner: str):
    require_owner()
    assert not is_null_address(new_owner), 'InvalidParameter: new owner is the null address'

    old = metadata['owner']
    metadata['owner'] = new_owner

    OwnershipTransferredEvent({'old': old, 'new': new_owner})

@export
def add_provider(address: str):
    require_owner()
    assert not is_null_address(address), 'InvalidParameter: provider is the null address'
    assert not providers[address], 'InvalidParameter: address is already a provider'

    providers[address] = True
    ProviderAddedEvent({'addr': address})

@export
def remove_provider(address: str):
    require_owner()
    assert providers[address], 'InvalidParameter: address is not a provider'

    providers[address] = False
    ProviderRemovedEvent({'addr': address})

@export
def pause():
    require_owner()
    assert not metadata['paused'], 'AlreadyPaused: aggregator is already paused'

    metadata['paused'] = True
    PausedEvent({'addr': ctx.caller})

@export
def unpause():
    require_owner()

    metadata['paused'] = False
    UnpausedEvent({'addr': ctx.caller})

@export
def set_cooldown(seconds: int):
    require_owner()
    assert seconds > 0, 'InvalidParameter: cooldown must be positive'

    old = metadata['cooldown_seconds']
    metadata['cooldown_seconds'] = seconds
    CooldownSetEvent({'old': old, 'new': seconds})

# -----------------------------------------------------------------------------
# Batch lifecycle
# -----------------------------------------------------------------------------

@export
def open_batch():
    require_owner()
    require_not_paused()
    assert not batch_open.get(), 'InvalidBatchState: a batch is already open'

    fhe = algebra_contract()
    bid = batch_id.get() + 1
    batch_id.set(bid)

    for name in ACCUMULATORS:
        accumulators[name] = fhe.zero()

    batch_open.set(True)
    BatchOpenedEvent({'batch_id': bid})
    return bid

@export
def close_batch():
    require_owner()
    require_not_paused()
    assert batch_open.get(), 'InvalidBatchState: no batch is open'

    batch_open.set(False)
    BatchClosedEvent({'batch_id': batch_id.get()})

@export
def submit_data(resource_handle: str, price_handle: str):
    assert providers[ctx.caller], 'NotProvider: caller is not a provider'
    require_not_paused()
    assert batch_open.get(), 'BatchClosed: no batch is open'
    require_cooldown_elapsed(ACTION_SUBMIT)

    fhe = algebra_contract()
    assert is_initialized(fhe, resource_handle), 'InvalidParameter: unknown resource ciphertext'
    assert is_initialized(fhe, price_handle), 'InvalidParameter: unknown price ciphertext'

    # TODO: range-proof or capped-delta check on the submitted ciphertexts.
    deltas = {
        'total_resource_output': resource_handle,
        'price_index': price_handle,
        'num_submissions': fhe.encrypt(value=1)
    }

    for name in ACCUMULATORS:
        current = accumulators[name]
        if not is_initialized(fhe, current):
            current = fhe.zero()
        accumulators[name] = fhe.add(a=current, b=deltas[name])

    record_action(ACTION_SUBMIT)

    DataSubmittedEvent({
        'provider': ctx.caller,
        'batch_id': batch_id.get(),
        'resource_handle': resource_handle,
        'price_handle': price_handle
    })

# -----------------------------------------------------------------------------
# Decryption oracle bridge
# -----------------------------------------------------------------------------

@export
def request_decryption():
    require_owner()
    require_not_paused()
    require_cooldown_elapsed(ACTION_REQUEST)
    assert batch_id.get() > 0, 'InvalidBatchState: no batch has been opened'

    fhe = algebra_contract()
    handles = current_handles()
    for handle in handles:
        assert is_initialized(fhe, handle), 'InvalidBatchState: accumulators are not initialized'

    commitment = compute_state_commitment(fhe)
    request_id = oracle_contract().request_decryption(handles=handles, callback=CALLBACK_NAME)
    assert decryption_contexts[request_id] is None, 'ReplayAttempt: request id already used'

    decryption_contexts[request_id] = {
        'batch_id': batch_id.get(),
        'state_commitment': commitment,
        'processed': False,
        'requested_at': str(now)
    }
    record_action(ACTION_REQUEST)

    DecryptionRequestedEvent({
        'request_id': request_id,
        'batch_id': batch_id.get(),
        'commitment': commitment
    })
    return request_id

@export
def on_decryption_callback(request_id: str, cleartexts: str, proof: str):
    # Open to any caller: the oracle proof is the authorization.
    context = decryption_contexts[request_id]
    assert context is not None, 'UnknownRequest: no decryption context for request'
    assert not context['processed'], 'ReplayAttempt: request already processed'

    assert compute_state_commitment(algebra_contract()) == context['state_commitment'], \
        'StateMismatch: accumulators changed since the request'

    assert oracle_contract().verify_proof(request_id=request_id, cleartexts=cleartexts, proof=proof), \
        'InvalidProof: oracle proof rejected'

    values = decode_cleartexts(cleartexts)

    context['processed'] = True
    decryption_contexts[request_id] = context

    result = {
        'request_id': request_id,
        'batch_id': context['batch_id'],
        'total_resource_output': values[0],
        'price_index': values[1],
        'num_submissions': values[2]
    }
    revealed_totals[request_id] = result

    DecryptionCompletedEvent(result)
    return result
