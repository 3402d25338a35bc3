import numpy as np

from einloop import einsum, einsum_unchecked

signal = np.array([1.0, 4.0, 9.0, 16.0, 25.0])

# forward difference: `i` and `i + 1` bound `i` differently, so the
# consistency check would reject this; the first occurrence sets 1..n-1
diff = einsum_unchecked("D[i] := x[i + 1] - x[i]", x=signal)
print("forward difference:", diff)

# window shift captured from the namespace
window = einsum("W[i] := x[i + $lag]", x=signal, lag=2)
print("shifted window:", window)

# in-place accumulation into an existing array
acc = np.zeros(3)
for _ in range(2):
    einsum("acc[i] += M[i,j] * v[j]", acc=acc, M=np.eye(3), v=np.array([1.0, 2.0, 3.0]))
print("accumulated twice:", acc)

# diagonal write
D = np.zeros((3, 3))
einsum("D[i,i] = d[i]", D=D, d=np.array([1.0, 2.0, 3.0]))
print("diagonal:\n", D)

# trusted inputs: no dimension checks or bounds assertions
print("dot:", einsum_unchecked("s := a[i] * b[i]", a=np.arange(3), b=np.arange(3)))
