import sys
from pathlib import Path

# 确保项目根目录与 tests 目录在 sys.path，便于测试内直接以顶层包名导入（以及共享的 fakes）
ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, ROOT / "tests"):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)
