"""
Contract Source Provider: compiled artifacts on disk.

Layout of the source directory (as produced by the project's compile script):

    <dir>/<Name>.abi   JSON ABI
    <dir>/<Name>.bin   creation bytecode as hex, without 0x
    <dir>/recompile.sh optional script that regenerates the above
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Protocol, Union, runtime_checkable

from fxchain.types.abi import AbiModel
from fxchain.utils.bytes import from_hex

log = logging.getLogger(__name__)


@runtime_checkable
class ContractSourceProvider(Protocol):
    def get_abi(self, name: str) -> List[Dict[str, Any]]: ...

    def get_code(self, name: str) -> str: ...


class FileSourceProvider:
    def __init__(self, directory: Union[str, Path] = "./source") -> None:
        self.directory = Path(directory)
        self._abi_cache: Dict[str, List[Dict[str, Any]]] = {}

    def _path(self, name: str, suffix: str) -> Path:
        p = self.directory / f"{name}{suffix}"
        if not p.is_file():
            raise FileNotFoundError(f"artifact {name!r} has no {suffix} file in {self.directory}")
        return p

    def get_abi(self, name: str) -> List[Dict[str, Any]]:
        if name not in self._abi_cache:
            with self._path(name, ".abi").open("r", encoding="utf-8") as f:
                self._abi_cache[name] = json.load(f)
        return self._abi_cache[name]

    def get_model(self, name: str) -> AbiModel:
        return AbiModel.from_list(self.get_abi(name))

    def get_code(self, name: str) -> str:
        """Creation bytecode as a 0x-prefixed hex string."""
        text = self._path(name, ".bin").read_text(encoding="utf-8").strip()
        if text.startswith(("0x", "0X")):
            text = text[2:]
        from_hex(text)  # validate
        return "0x" + text

    def artifacts(self) -> List[str]:
        return sorted(p.stem for p in self.directory.glob("*.abi") if p.with_suffix(".bin").is_file())

    async def recompile(self, script: str = "recompile.sh") -> int:
        """
        Run the compile script from the project directory and drop cached ABIs.

        Returns the script's exit code; a non-zero code is logged, not raised,
        so a stale but present artifact set stays usable.
        """
        path = self.directory / script
        if not path.is_file():
            path = Path(script)
        if not path.is_file():
            raise FileNotFoundError(f"compile script not found: {script}")
        proc = await asyncio.create_subprocess_exec(
            "bash",
            str(path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        out, err = await proc.communicate()
        self._abi_cache.clear()
        if proc.returncode != 0:
            log.warning("%s exited with %s: %s", path, proc.returncode, err.decode(errors="replace").strip())
        else:
            log.debug("%s: %s", path, out.decode(errors="replace").strip())
        return int(proc.returncode or 0)


__all__ = ["ContractSourceProvider", "FileSourceProvider"]
