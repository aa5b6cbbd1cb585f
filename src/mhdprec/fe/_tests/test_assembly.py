import pytest

try:
    import firedrake as fd
    from mhdprec.fe.assembly import (
        assemble_block_system,
        assemble_operator,
        field_index_sets,
        mixed_field_sizes,
    )
except Exception:  # pragma: no cover
    pytest.skip("Firedrake not available", allow_module_level=True)


def _mhd_space(mesh):
    U = fd.VectorFunctionSpace(mesh, "CG", 2)
    P = fd.FunctionSpace(mesh, "CG", 1)
    J = fd.FunctionSpace(mesh, "RT", 1)
    Phi = fd.FunctionSpace(mesh, "DG", 0)
    return fd.MixedFunctionSpace((U, P, J, Phi))


def _mass_form(W):
    u, p, j, phi = fd.TrialFunctions(W)
    v, q, k, psi = fd.TestFunctions(W)
    return (fd.inner(u, v) + p * q + fd.inner(j, k) + phi * psi) * fd.dx


def test_assemble_block_system_layout():
    mesh = fd.UnitSquareMesh(2, 2)
    W = _mhd_space(mesh)
    A = assemble_block_system(_mass_form(W))
    assert A.layout.sizes == tuple(W.sub(i).dim() for i in range(4))
    assert A.shape == (A.layout.size, A.layout.size)
    # Mass forms do not couple the fields
    assert A[0, 1].nnz == 0
    assert A[2, 2].nnz > 0


def test_assemble_block_system_requires_four_fields():
    mesh = fd.UnitSquareMesh(2, 2)
    P = fd.FunctionSpace(mesh, "CG", 1)
    W = fd.MixedFunctionSpace((P, P))
    p1, p2 = fd.TrialFunctions(W)
    q1, q2 = fd.TestFunctions(W)
    with pytest.raises(ValueError, match="4-field"):
        assemble_block_system((p1 * q1 + p2 * q2) * fd.dx)
    with pytest.raises(ValueError, match="4-field"):
        mixed_field_sizes(W)


def test_assemble_operator_returns_csr():
    mesh = fd.UnitSquareMesh(2, 2)
    P = fd.FunctionSpace(mesh, "CG", 1)
    p = fd.TrialFunction(P)
    q = fd.TestFunction(P)
    mass = assemble_operator(p * q * fd.dx)
    assert mass.shape == (P.dim(), P.dim())
    assert mass.nnz > 0


def test_field_index_sets_match_sizes():
    mesh = fd.UnitSquareMesh(2, 2)
    W = _mhd_space(mesh)
    ises = field_index_sets(W)
    assert [iset.getSize() for iset in ises] == [W.sub(i).dim() for i in range(4)]
