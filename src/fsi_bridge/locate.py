"""定位 dotnet 可执行文件。"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Optional

from fsi_bridge.core.errors import SpawnError


def find_dotnet(name: str = "dotnet", *, explicit: Optional[str] = None) -> str:
    """
    返回可执行文件的绝对路径。

    参数：
    - name：在 PATH 中查找的命令名
    - explicit：可选；显式路径（必须存在且可执行，不再查 PATH）

    异常：
    - SpawnError(code=EXECUTABLE_NOT_FOUND)
    """

    if explicit:
        p = Path(explicit).expanduser()
        if p.is_file() and os.access(p, os.X_OK):
            return str(p.absolute())
        raise SpawnError(
            f"Configured executable is not runnable: {explicit}",
            code="EXECUTABLE_NOT_FOUND",
            details={"path": str(p)},
        )

    found = shutil.which(name)
    if found is None:
        raise SpawnError(f"Could not locate {name} in the path.", code="EXECUTABLE_NOT_FOUND", details={"name": name})
    return found
