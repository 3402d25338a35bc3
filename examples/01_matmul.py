import numpy as np

from einloop import Einsum

rng = np.random.default_rng(0)
A = rng.normal(size=(4, 3))
B = rng.normal(size=(3, 5))

prog = Einsum("C[i,j] := A[i,k] * B[k,j]")
print(prog.explain())

runner = prog.compile(backend="numpy")
C = runner(A=A, B=B)
print("C shape:", C.shape)
print("max error vs A @ B:", float(np.abs(C - A @ B).max()))
print(runner.explain())
