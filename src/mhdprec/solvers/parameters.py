# Newton-Raphson parameters (infinity-norm check relative to the initial residual)
NEWTON_PARAMS: dict = {
    "tolerance": 1.0e-6,
    "max_iterations": 100,
}

# Outer GMRES parameters for the block-preconditioned Jacobian solves
GMRES_PARAMS: dict = {
    "restart": 300,
    "rtol": 1.0e-10,
    "atol": 0.0,
    "max_iterations": 300,
}

# Plain GMRES without preconditioner needs a larger budget
PLAIN_GMRES_PARAMS: dict = {**GMRES_PARAMS, "max_iterations": 5000}

# Sparse direct sub-solver (SuperLU)
LU_SUBSOLVER_PARAMS: dict = {
    "type": "lu",
    "pivot_tolerance": 1.0e-14,
}

# Iterative sub-solver: GMRES + ILU, tight enough not to spoil the outer iteration
ILU_GMRES_SUBSOLVER_PARAMS: dict = {
    "type": "ilu_gmres",
    "rtol": 1.0e-10,
    "atol": 0.0,
    "restart": 50,
    "max_iterations": 1000,
    "drop_tol": 1.0e-5,
    "fill_factor": 10.0,
}

# Block preconditioner with LU in each of the five sub-solves
BLOCK_LU_PARAMS: dict = {
    "ij": LU_SUBSOLVER_PARAMS,
    "fu": LU_SUBSOLVER_PARAMS,
    "ip": LU_SUBSOLVER_PARAMS,
    "dp": LU_SUBSOLVER_PARAMS,
    "dphi": LU_SUBSOLVER_PARAMS,
}

# Block preconditioner with GMRES + ILU in each of the five sub-solves
BLOCK_ILU_GMRES_PARAMS: dict = {
    "ij": ILU_GMRES_SUBSOLVER_PARAMS,
    "fu": ILU_GMRES_SUBSOLVER_PARAMS,
    "ip": ILU_GMRES_SUBSOLVER_PARAMS,
    "dp": ILU_GMRES_SUBSOLVER_PARAMS,
    "dphi": ILU_GMRES_SUBSOLVER_PARAMS,
}

# Newton + block-preconditioned GMRES with LU sub-solves (the reference configuration)
BLOCK_GMRES_SOLVER_PARAMS: dict = {
    "newton": NEWTON_PARAMS,
    "gmres": GMRES_PARAMS,
    "blocks": BLOCK_LU_PARAMS,
}

# Newton + block-preconditioned GMRES with iterative sub-solves
BLOCK_GMRES_ILU_SOLVER_PARAMS: dict = {
    "newton": NEWTON_PARAMS,
    "gmres": GMRES_PARAMS,
    "blocks": BLOCK_ILU_GMRES_PARAMS,
}

# PETSc sub-KSP: direct solver via MUMPS
PETSC_MUMPS_PARAMS: dict = {
    "ksp_type": "preonly",
    "pc_type": "lu",
    "pc_factor_mat_solver_type": "mumps",
}

# PETSc sub-KSP: PETSc's own (sequential) LU
PETSC_LU_PARAMS: dict = {
    "ksp_type": "preonly",
    "pc_type": "lu",
    "pc_factor_mat_solver_type": "petsc",
}

# PETSc outer KSP using the MHD block preconditioner as a python PC
PETSC_BLOCK_GMRES_PARAMS: dict = {
    "ksp_type": "gmres",
    "ksp_gmres_restart": 300,
    "ksp_rtol": 1.0e-10,
    "ksp_atol": 1.0e-50,
    "ksp_max_it": 300,
    "pc_type": "python",
}
