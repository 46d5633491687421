"""
charter self-check script
Covers: address derivation, custody packing, authorization gate,
fund state machine, salt mining, configuration.

Usage:
    python selfcheck.py
"""
import sys, os, time, traceback
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

RESULTS = []
WARNINGS = []
ERRORS = []
START_TIME = time.time()

GOV = "0x00000000000000000000000000000000000000a1"
MARSHAL = "0x00000000000000000000000000000000000000b2"
USER = "0x00000000000000000000000000000000000000c3"
TOKEN = "0x00000000000000000000000000000000000000d4"

def ok(section, name, detail=""):
    RESULTS.append((section, name, "PASS", detail))
    print(f"  [PASS] {name}" + (f"  → {detail}" if detail else ""))

def warn(section, name, detail=""):
    RESULTS.append((section, name, "WARN", detail))
    WARNINGS.append((section, name, detail))
    print(f"  [WARN] {name}" + (f"  → {detail}" if detail else ""))

def fail(section, name, detail=""):
    RESULTS.append((section, name, "FAIL", detail))
    ERRORS.append((section, name, detail))
    print(f"  [FAIL] {name}" + (f"  → {detail}" if detail else ""))

def section(name):
    print(f"\n{'='*60}")
    print(f"  {name}")
    print(f"{'='*60}")

# ================================================================
# SUBSYSTEM 1: ADDRESS DERIVATION
# ================================================================
section("SUBSYSTEM 1 · ADDRESS DERIVATION  (CREATE2)")
try:
    from eth_utils import keccak
    from charter.address import compute_create2_address, custody_key

    addr = compute_create2_address("0x" + "00" * 20, 0, keccak(b"\x00"))
    if addr == "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38":
        ok("S1_address", "EIP-1014 vector #0", addr)
    else:
        fail("S1_address", "EIP-1014 vector #0", f"got {addr}")

    if custody_key(USER, TOKEN) != custody_key(TOKEN, USER):
        ok("S1_address", "Custody key is ordered", "0x" + custody_key(USER, TOKEN).hex()[:16] + "...")
    else:
        fail("S1_address", "Custody key is ordered", "swapped identities collide")
except Exception as e:
    fail("S1_address", "FATAL", str(e)); traceback.print_exc()

# ================================================================
# SUBSYSTEM 2: CUSTODY PACKING
# ================================================================
section("SUBSYSTEM 2 · CUSTODY  (packed owned/escrow word)")
try:
    from charter.custody import MAX_UINT128, pack_amount, split_amount

    samples = [(0, 0), (1, 0), (0, 1), (MAX_UINT128, MAX_UINT128), (12345, 67890)]
    bad = [s for s in samples if split_amount(pack_amount(*s)) != s]
    if bad:
        fail("S2_custody", "pack/split inverse", f"mismatch on {bad}")
    else:
        ok("S2_custody", "pack/split inverse", f"{len(samples)} samples")
except Exception as e:
    fail("S2_custody", "FATAL", str(e)); traceback.print_exc()

# ================================================================
# SUBSYSTEM 3: HUB + FUND STATE MACHINE
# ================================================================
section("SUBSYSTEM 3 · HUB + FUND  (contribute/commit/remit/rescind)")
try:
    from charter.assets import InMemoryAssets
    from charter.hub import Foundation, UpgradeableBeacon
    from charter.protocol import Frozen, Unauthorized
    from charter.registry import StaticGovernance

    assets = InMemoryAssets()
    hub = Foundation(
        address="0x00000000000000000000000000000000000000f0",
        governance=StaticGovernance(GOV),
        beacon=UpgradeableBeacon("0x00000000000000000000000000000000000000e1",
                                 "0x00000000000000000000000000000000000000e2"),
        assets=assets,
        proxy_creation_code=b"\x60\x80\x60\x40",
    )
    try:
        hub.charter_fund(MARSHAL, USER)
        fail("S3_hub", "Charter gate", "non-marshal chartered a fund")
    except Unauthorized:
        ok("S3_hub", "Charter gate", "non-marshal rejected")

    hub.set_marshal(GOV, MARSHAL, True)
    fund = hub.fund(hub.charter_fund(MARSHAL, USER))
    ok("S3_hub", "Charter", fund.address)

    assets.mint(USER, TOKEN, 1_000_000)
    fund.contribute(USER, TOKEN, 1_000_000)
    fund.commit(MARSHAL, USER, TOKEN, 400_000)
    fund.remit(MARSHAL, USER, TOKEN, 100_000, fee=1_000)
    rec = fund.record(USER, TOKEN)
    if (rec.owned, rec.escrow) == (600_000, 299_000):
        ok("S3_hub", "Transitions", f"owned={rec.owned} escrow={rec.escrow}")
    else:
        fail("S3_hub", "Transitions", f"owned={rec.owned} escrow={rec.escrow}")

    hub.set_freeze(GOV, True)
    try:
        fund.commit(MARSHAL, USER, TOKEN, 1)
        fail("S3_hub", "Freeze gate", "commit succeeded while frozen")
    except Frozen:
        ok("S3_hub", "Freeze gate", "commit rejected while frozen")

    paid = fund.request_rescission(USER, TOKEN)
    ok("S3_hub", "Rescission while frozen", f"paid {paid}, wallet={assets.balance_of(USER, TOKEN)}")
    ok("S3_hub", "Event log", f"{len(hub.events)} events")
except Exception as e:
    fail("S3_hub", "FATAL", str(e)); traceback.print_exc()

# ================================================================
# SUBSYSTEM 4: SALT MINING
# ================================================================
section("SUBSYSTEM 4 · SALT MINER  (vanity prefix search)")
try:
    from eth_utils import keccak
    from charter.miner import PrefixPredicate, SaltSpace, mine

    space = SaltSpace(deployer="0x4e59b44847b379578588920cA78FbF26c0B4956C", init_code_hash=keccak(b"charter"))
    t0 = time.time()
    found = mine(PrefixPredicate.from_hex("0x00"), range(0, 100_000), space)
    again = mine(PrefixPredicate.from_hex("0x00"), range(0, 100_000), space)
    if found == again:
        ok("S4_miner", "8-bit prefix", f"index={found.index} {found.address} ({time.time()-t0:.2f}s)")
    else:
        fail("S4_miner", "Determinism", f"{found.index} != {again.index}")
except Exception as e:
    fail("S4_miner", "FATAL", str(e)); traceback.print_exc()

# ================================================================
# ENV CHECK
# ================================================================
section("ENV CHECK")
from charter.config import CharterConfig
config = CharterConfig.from_env()
env_groups = {
    "SERVER": ["FOUNDATION_ADDRESS", "GOVERNANCE_ADDRESS", "BEACON_ADDRESS",
               "FUND_IMPLEMENTATION", "PROXY_BYTECODE_PATH"],
    "DEPLOY": ["RPC_URL", "PRIVATE_KEY", "FOUNDATION_IMPLEMENTATION", "FOUNDATION_PROXY_BYTECODE_PATH"],
}
for cat, keys in env_groups.items():
    missing = [k for k in keys if not os.getenv(k)]
    if missing:
        warn("env_check", cat, f"missing: {missing} (normal for dev environment)")
    else:
        ok("env_check", cat, "all present")

# ================================================================
# FINAL SUMMARY
# ================================================================
section("FINAL SUMMARY")
total = len(RESULTS)
passed = sum(1 for r in RESULTS if r[2] == "PASS")
warned = sum(1 for r in RESULTS if r[2] == "WARN")
failed = sum(1 for r in RESULTS if r[2] == "FAIL")

print(f"\n  Total checks  : {total}")
print(f"  PASS          : {passed}")
print(f"  WARN          : {warned}")
print(f"  FAIL          : {failed}")
print(f"  Elapsed       : {time.time() - START_TIME:.1f}s")

if ERRORS:
    print("\n  CRITICAL FAILURES:")
    for s, n, d in ERRORS:
        print(f"    [{s}] {n}: {d}")
    sys.exit(1)
