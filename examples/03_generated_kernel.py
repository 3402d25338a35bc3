import numpy as np

from einloop import Einsum, ExecutionConfig

prog = Einsum(
    "T[a,b] := X[a,c,d] * Y[d,c,b]",
    config=ExecutionConfig(vectorize_inner_loop=True),
)
print(prog.to_source(name="contract_xy"))

kernel = prog.compile(backend="python")
X = np.arange(24.0).reshape(2, 3, 4)
Y = np.arange(36.0).reshape(4, 3, 3)
T = kernel(X=X, Y=Y)
print("matches numpy.einsum:", bool(np.allclose(T, np.einsum("acd,dcb->ab", X, Y))))
