import re, zipfile, sys, subprocess, pathlib
import pytest

from sqlite_typed import PACKAGE_VERSION

@pytest.mark.build
def test_build_wheel_and_sdist(tmp_path):
    """Build sdist & wheel; validate filenames and wheel METADATA version without installing.
    Skips if 'build' module absent to avoid hard dependency in minimal env.
    """
    pytest.importorskip('build')
    project_root = pathlib.Path(__file__).resolve().parents[1]
    dist_dir = tmp_path / 'dist'
    dist_dir.mkdir()
    cmd = [sys.executable, '-m', 'build', '--wheel', '--sdist', '--outdir', str(dist_dir)]
    proc = subprocess.run(cmd, capture_output=True, text=True, cwd=project_root)
    if proc.returncode != 0 and 'No matching distribution' in proc.stderr:
        pytest.skip('build isolation needs network access')
    assert proc.returncode == 0, f"build failed: {proc.stdout}\n{proc.stderr}"
    wheels = list(dist_dir.glob('sqlite_typed-*-py3-none-any.whl'))
    assert wheels, f"No wheel produced. Contents: {[p.name for p in dist_dir.iterdir()]}"
    wheel = wheels[0]
    assert f"-{PACKAGE_VERSION}-" in wheel.name, f"Wheel filename version mismatch: {wheel.name} vs {PACKAGE_VERSION}"
    with zipfile.ZipFile(wheel, 'r') as zf:
        names = zf.namelist()
        meta_path = [n for n in names if n.endswith('METADATA')][0]
        meta = zf.read(meta_path).decode('utf-8', errors='replace')
    assert 'sqlite_typed/statement.py' in names
    assert not any(n.startswith(('tests/', 'scripts/')) for n in names)
    m = re.search(r'^Version: (.+)$', meta, re.MULTILINE)
    assert m and m.group(1).strip() == PACKAGE_VERSION
    # stdlib sqlite3 only; extras like dev are fine
    runtime_deps = [line for line in meta.split('\n') if line.startswith('Requires-Dist:') and 'extra ==' not in line]
    assert not runtime_deps, f'Unexpected runtime dependencies declared: {runtime_deps}'
    # no long description; DESIGN.md is a repo document, not package metadata
    assert 'Grounding ledger' not in meta
    sdists = list(dist_dir.glob('sqlite*typed-*.tar.gz'))
    assert sdists, 'No sdist produced'
