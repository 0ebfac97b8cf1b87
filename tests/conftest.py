import hashlib
import importlib.util
from datetime import datetime, timedelta
from pathlib import Path

import contracting
import pytest
from contracting.client import ContractingClient
from contracting.compilation import whitelists
from contracting.stdlib.bridge.time import Datetime

PROJECT_ROOT = Path(__file__).resolve().parents[1]
AGGREGATOR_PATH = PROJECT_ROOT / "con_encrypted_aggregator.py"
FHE_PATH = PROJECT_ROOT / "con_fhe_mock.py"
ORACLE_PATH = PROJECT_ROOT / "con_decryption_oracle.py"
HELPER_PATH = PROJECT_ROOT / "client_helper.py"
SUBMISSION_PATH = (
    Path(contracting.__file__).resolve().parent / "contracts" / "submission.s.py"
)

AGGREGATOR_NAME = "con_encrypted_aggregator"
FHE_NAME = "con_fhe_mock"
ORACLE_NAME = "con_decryption_oracle"
COOLDOWN_SECONDS = 60
EPOCH = datetime(2026, 1, 1)


def at(seconds):
    """Chain time `seconds` after EPOCH, as the runtime's `now`."""
    d = EPOCH + timedelta(seconds=seconds)
    return {"now": Datetime(d.year, d.month, d.day, d.hour, d.minute, d.second)}


def execute(client, function, kwargs=None, *, signer="operator", seconds=0, contract=AGGREGATOR_NAME):
    """Runs one transaction and returns the full executor output, events included."""
    output = client.executor.execute(
        sender=signer,
        contract_name=contract,
        function_name=function,
        kwargs=kwargs or {},
        environment=at(seconds),
        auto_commit=True,
    )
    assert output["status_code"] == 0, output["result"]
    return output


def events_named(output, name, contract=AGGREGATOR_NAME):
    """Payloads of the `name` events a transaction emitted from `contract`."""
    found = []
    for event in output["events"]:
        if event["event"] != name or event["contract"] != contract:
            continue
        payload = dict(event.get("data_indexed", {}))
        payload.update(event.get("data", {}))
        found.append(payload)
    return found


@pytest.fixture(scope="session", autouse=True)
def enable_sha3_and_whitelist():
    whitelists.ALLOWED_BUILTINS.update({"hashlib", "decimal"})

    if not hasattr(hashlib, "sha3"):
        def _sha3(data):
            if isinstance(data, str):
                data = data.encode("utf-8")
            return hashlib.sha3_256(data).hexdigest()

        setattr(hashlib, "sha3", _sha3)


@pytest.fixture(scope="session")
def helper_module():
    spec = importlib.util.spec_from_file_location("client_helper_tests", HELPER_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def deploy(client):
    """Fresh chain with algebra, oracle and aggregator wired together."""
    client.flush()
    client.set_submission_contract(str(SUBMISSION_PATH))

    client.submit(FHE_PATH.read_text(), name=FHE_NAME, owner=None)
    fhe = client.get_contract(FHE_NAME)

    client.submit(
        ORACLE_PATH.read_text(),
        name=ORACLE_NAME,
        owner=None,
        constructor_args={"algebra": FHE_NAME},
    )
    fhe.set_decryptor(address=ORACLE_NAME)

    client.submit(
        AGGREGATOR_PATH.read_text(),
        name=AGGREGATOR_NAME,
        owner=None,
        constructor_args={
            "algebra": FHE_NAME,
            "oracle": ORACLE_NAME,
            "cooldown_seconds": COOLDOWN_SECONDS,
        },
    )
    return (
        fhe,
        client.get_contract(ORACLE_NAME),
        client.get_contract(AGGREGATOR_NAME),
    )


@pytest.fixture
def client():
    return ContractingClient(signer="operator", metering=False)


@pytest.fixture
def deployment(client):
    return deploy(client)


@pytest.fixture
def fhe(deployment):
    return deployment[0]


@pytest.fixture
def oracle(deployment):
    return deployment[1]


@pytest.fixture
def contract(deployment):
    return deployment[2]


@pytest.fixture
def relayer(helper_module, oracle):
    return helper_module.DecryptionRelayer(oracle, signer="operator")
