"""X-chain wire format for the handful of types the workload touches.

Only what the transaction chain needs is covered: secp256k1 transfer outputs
and inputs, the base transaction, its credentials, and UTXOs. Everything is
big-endian, slices are prefixed with a uint32 length, and every top-level
structure starts with a uint16 codec version.

See avalanchego/vms/avm and avalanchego/vms/secp256k1fx for the Go definitions.
"""

import hashlib
import struct
from dataclasses import dataclass, field

import base58
from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.util import sigdecode_string, sigencode_string_canonize

import avaworkload.constants as C
from avaworkload.errors import CodecError

ID_LEN = 32
SHORT_ID_LEN = 20
SIGNATURE_LEN = 65
CHECKSUM_LEN = 4


def sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def _checksum(b: bytes) -> bytes:
    return sha256(b)[-CHECKSUM_LEN:]


# ---------------------------------------------------------------------------
# String encodings
# ---------------------------------------------------------------------------

def cb58_encode(b: bytes) -> str:
    return base58.b58encode(b + _checksum(b)).decode()


def cb58_decode(s: str) -> bytes:
    try:
        raw = base58.b58decode(s)
    except ValueError as e:
        raise CodecError(f"invalid cb58 string {s!r}: {e}") from e
    if len(raw) < CHECKSUM_LEN:
        raise CodecError(f"cb58 string {s!r} is too short")
    payload, check = raw[:-CHECKSUM_LEN], raw[-CHECKSUM_LEN:]
    if _checksum(payload) != check:
        raise CodecError(f"cb58 checksum mismatch for {s!r}")
    return payload


def hex_encode(b: bytes) -> str:
    return "0x" + (b + _checksum(b)).hex()


def hex_decode(s: str) -> bytes:
    if not s.startswith("0x"):
        raise CodecError("hex string missing 0x prefix")
    try:
        raw = bytes.fromhex(s[2:])
    except ValueError as e:
        raise CodecError(f"invalid hex string: {e}") from e
    if len(raw) < CHECKSUM_LEN:
        raise CodecError("hex string is too short")
    payload, check = raw[:-CHECKSUM_LEN], raw[-CHECKSUM_LEN:]
    if _checksum(payload) != check:
        raise CodecError("hex checksum mismatch")
    return payload


def encode_bytes(b: bytes, encoding: C.Encoding | str = C.Encoding.HEX) -> str:
    if C.Encoding(encoding) is C.Encoding.CB58:
        return cb58_encode(b)
    return hex_encode(b)


def decode_bytes(s: str, encoding: C.Encoding | str = C.Encoding.HEX) -> bytes:
    if C.Encoding(encoding) is C.Encoding.CB58:
        return cb58_decode(s)
    return hex_decode(s)


def id_to_str(b: bytes) -> str:
    return cb58_encode(b)


def id_from_str(s: str) -> bytes:
    b = cb58_decode(s)
    if len(b) != ID_LEN:
        raise CodecError(f"ID {s!r} decodes to {len(b)} bytes, want {ID_LEN}")
    return b


def parse_private_key(s: str) -> bytes:
    """Turn ``PrivateKey-<cb58>`` as returned by ``avm.exportKey`` into the raw 32 byte secret."""
    if not s.startswith(C.SECRET_KEY_PREFIX):
        raise CodecError(f"private key missing {C.SECRET_KEY_PREFIX} prefix")
    key = cb58_decode(s.removeprefix(C.SECRET_KEY_PREFIX))
    if len(key) != 32:
        raise CodecError(f"private key is {len(key)} bytes, want 32")
    return key


def format_private_key(key: bytes) -> str:
    return C.SECRET_KEY_PREFIX + cb58_encode(key)


# ---------------------------------------------------------------------------
# Packing
# ---------------------------------------------------------------------------

class Packer:
    def __init__(self) -> None:
        self._buf = bytearray()

    def u16(self, v: int) -> "Packer":
        self._buf += struct.pack(">H", v)
        return self

    def u32(self, v: int) -> "Packer":
        self._buf += struct.pack(">I", v)
        return self

    def u64(self, v: int) -> "Packer":
        if v < 0 or v >= 1 << 64:
            raise CodecError(f"{v} does not fit in a uint64")
        self._buf += struct.pack(">Q", v)
        return self

    def fixed(self, b: bytes, n: int) -> "Packer":
        if len(b) != n:
            raise CodecError(f"expected {n} bytes, got {len(b)}")
        self._buf += b
        return self

    def var(self, b: bytes) -> "Packer":
        self.u32(len(b))
        self._buf += b
        return self

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class Unpacker:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._off = 0

    def _take(self, n: int) -> bytes:
        end = self._off + n
        if end > len(self._data):
            raise CodecError(f"unexpected end of data at offset {self._off} (need {n} bytes)")
        out = self._data[self._off:end]
        self._off = end
        return out

    def u16(self) -> int:
        return struct.unpack(">H", self._take(2))[0]

    def u32(self) -> int:
        return struct.unpack(">I", self._take(4))[0]

    def u64(self) -> int:
        return struct.unpack(">Q", self._take(8))[0]

    def fixed(self, n: int) -> bytes:
        return self._take(n)

    def var(self) -> bytes:
        return self._take(self.u32())

    def version(self) -> None:
        v = self.u16()
        if v != C.CODEC_VERSION:
            raise CodecError(f"unsupported codec version {v}")

    def done(self) -> None:
        if self._off != len(self._data):
            raise CodecError(f"{len(self._data) - self._off} trailing bytes")


# ---------------------------------------------------------------------------
# Wire types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class OutputOwners:
    locktime: int
    threshold: int
    addresses: tuple[bytes, ...]

    def pack(self, p: Packer) -> None:
        p.u64(self.locktime).u32(self.threshold).u32(len(self.addresses))
        for a in self.addresses:
            p.fixed(a, SHORT_ID_LEN)

    @classmethod
    def unpack(cls, u: Unpacker) -> "OutputOwners":
        locktime = u.u64()
        threshold = u.u32()
        addrs = tuple(u.fixed(SHORT_ID_LEN) for _ in range(u.u32()))
        return cls(locktime=locktime, threshold=threshold, addresses=addrs)

    @classmethod
    def single(cls, address: bytes) -> "OutputOwners":
        return cls(locktime=0, threshold=1, addresses=(address,))


@dataclass(frozen=True, slots=True)
class TransferOutput:
    amount: int
    owners: OutputOwners

    def pack(self, p: Packer) -> None:
        p.u32(C.TRANSFER_OUTPUT_TYPE_ID).u64(self.amount)
        self.owners.pack(p)

    @classmethod
    def unpack(cls, u: Unpacker) -> "TransferOutput":
        type_id = u.u32()
        if type_id != C.TRANSFER_OUTPUT_TYPE_ID:
            raise CodecError(f"unsupported output type {type_id}")
        amount = u.u64()
        return cls(amount=amount, owners=OutputOwners.unpack(u))


@dataclass(frozen=True, slots=True)
class UTXO:
    tx_id: bytes
    output_index: int
    asset_id: bytes
    output: TransferOutput

    @property
    def amount(self) -> int:
        return self.output.amount

    def to_bytes(self) -> bytes:
        p = Packer().u16(C.CODEC_VERSION).fixed(self.tx_id, ID_LEN).u32(self.output_index).fixed(self.asset_id, ID_LEN)
        self.output.pack(p)
        return p.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> "UTXO":
        u = Unpacker(data)
        u.version()
        utxo = cls(
            tx_id=u.fixed(ID_LEN),
            output_index=u.u32(),
            asset_id=u.fixed(ID_LEN),
            output=TransferOutput.unpack(u),
        )
        u.done()
        return utxo


@dataclass(frozen=True, slots=True)
class TransferableOutput:
    asset_id: bytes
    output: TransferOutput

    def pack(self, p: Packer) -> None:
        p.fixed(self.asset_id, ID_LEN)
        self.output.pack(p)

    @classmethod
    def unpack(cls, u: Unpacker) -> "TransferableOutput":
        return cls(asset_id=u.fixed(ID_LEN), output=TransferOutput.unpack(u))


@dataclass(frozen=True, slots=True)
class TransferableInput:
    tx_id: bytes
    output_index: int
    asset_id: bytes
    amount: int
    sig_indices: tuple[int, ...] = (0,)

    def pack(self, p: Packer) -> None:
        p.fixed(self.tx_id, ID_LEN).u32(self.output_index).fixed(self.asset_id, ID_LEN)
        p.u32(C.TRANSFER_INPUT_TYPE_ID).u64(self.amount).u32(len(self.sig_indices))
        for i in self.sig_indices:
            p.u32(i)

    @classmethod
    def unpack(cls, u: Unpacker) -> "TransferableInput":
        tx_id = u.fixed(ID_LEN)
        output_index = u.u32()
        asset_id = u.fixed(ID_LEN)
        type_id = u.u32()
        if type_id != C.TRANSFER_INPUT_TYPE_ID:
            raise CodecError(f"unsupported input type {type_id}")
        amount = u.u64()
        sig_indices = tuple(u.u32() for _ in range(u.u32()))
        return cls(tx_id=tx_id, output_index=output_index, asset_id=asset_id, amount=amount, sig_indices=sig_indices)


@dataclass(frozen=True, slots=True)
class BaseTx:
    network_id: int
    blockchain_id: bytes
    outputs: tuple[TransferableOutput, ...]
    inputs: tuple[TransferableInput, ...]
    memo: bytes = b""

    def pack(self, p: Packer) -> None:
        p.u32(C.BASE_TX_TYPE_ID).u32(self.network_id).fixed(self.blockchain_id, ID_LEN)
        p.u32(len(self.outputs))
        for o in self.outputs:
            o.pack(p)
        p.u32(len(self.inputs))
        for i in self.inputs:
            i.pack(p)
        p.var(self.memo)

    @classmethod
    def unpack(cls, u: Unpacker) -> "BaseTx":
        type_id = u.u32()
        if type_id != C.BASE_TX_TYPE_ID:
            raise CodecError(f"unsupported transaction type {type_id}")
        network_id = u.u32()
        blockchain_id = u.fixed(ID_LEN)
        outputs = tuple(TransferableOutput.unpack(u) for _ in range(u.u32()))
        inputs = tuple(TransferableInput.unpack(u) for _ in range(u.u32()))
        return cls(network_id=network_id, blockchain_id=blockchain_id, outputs=outputs, inputs=inputs, memo=u.var())

    def unsigned_bytes(self) -> bytes:
        p = Packer().u16(C.CODEC_VERSION)
        self.pack(p)
        return p.getvalue()


@dataclass(frozen=True, slots=True)
class SignedTx:
    unsigned: BaseTx
    credentials: tuple[tuple[bytes, ...], ...] = field(default=())

    def to_bytes(self) -> bytes:
        p = Packer().u16(C.CODEC_VERSION)
        self.unsigned.pack(p)
        p.u32(len(self.credentials))
        for sigs in self.credentials:
            p.u32(C.CREDENTIAL_TYPE_ID).u32(len(sigs))
            for s in sigs:
                p.fixed(s, SIGNATURE_LEN)
        return p.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> "SignedTx":
        u = Unpacker(data)
        u.version()
        unsigned = BaseTx.unpack(u)
        creds = []
        for _ in range(u.u32()):
            type_id = u.u32()
            if type_id != C.CREDENTIAL_TYPE_ID:
                raise CodecError(f"unsupported credential type {type_id}")
            creds.append(tuple(u.fixed(SIGNATURE_LEN) for _ in range(u.u32())))
        u.done()
        return cls(unsigned=unsigned, credentials=tuple(creds))

    @property
    def tx_id(self) -> bytes:
        return sha256(self.to_bytes())


# ---------------------------------------------------------------------------
# secp256k1 recoverable signatures
# ---------------------------------------------------------------------------

def public_key(private_key: bytes) -> bytes:
    """Compressed 33 byte public key."""
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return sk.get_verifying_key().to_string("compressed")


def sign_hash(private_key: bytes, digest: bytes) -> bytes:
    """Deterministic (RFC 6979), low-S, ``r || s || recovery_id`` signature over a 32 byte digest."""
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    rs = sk.sign_digest_deterministic(digest, hashfunc=hashlib.sha256, sigencode=sigencode_string_canonize)
    expected = sk.get_verifying_key().to_string("compressed")
    candidates = VerifyingKey.from_public_key_recovery_with_digest(
        rs, digest, SECP256k1, hashfunc=hashlib.sha256, sigdecode=sigdecode_string
    )
    # Candidates come back ordered by the parity of R.y, which is the recovery id.
    for rec_id, vk in enumerate(candidates):
        if vk.to_string("compressed") == expected:
            return rs + bytes([rec_id])
    raise BadSignatureError("signature does not recover to the signing key")


def recover_public_key(digest: bytes, signature: bytes) -> bytes:
    if len(signature) != SIGNATURE_LEN:
        raise CodecError(f"signature is {len(signature)} bytes, want {SIGNATURE_LEN}")
    rec_id = signature[64]
    candidates = VerifyingKey.from_public_key_recovery_with_digest(
        signature[:64], digest, SECP256k1, hashfunc=hashlib.sha256, sigdecode=sigdecode_string
    )
    if rec_id >= len(candidates):
        raise CodecError(f"invalid recovery id {rec_id}")
    return candidates[rec_id].to_string("compressed")
