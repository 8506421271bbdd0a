class OpType:
    # --- Motion candidates ---
    GATHER = "Gather"
    GATHER_ND = "GatherND"
    RESHAPE = "Reshape"

    # --- Rank adjustment ---
    UNSQUEEZE = "Unsqueeze"
    SQUEEZE = "Squeeze"

    # --- Elementwise binary ---
    ADD = "Add"
    SUB = "Sub"
    MUL = "Mul"
    DIV = "Div"
    POW = "Pow"

    # --- Elementwise unary ---
    CAST = "Cast"
    DROPOUT = "Dropout"
    GELU = "Gelu"
    RELU = "Relu"
    TANH = "Tanh"
    SIGMOID = "Sigmoid"
    ERF = "Erf"
    NEG = "Neg"
    SQRT = "Sqrt"
    EXP = "Exp"
    IDENTITY = "Identity"

    # --- Expensive producers ---
    MATMUL = "MatMul"
    LAYER_NORM = "LayerNormalization"
    SOFTMAX = "Softmax"
    TRANSPOSE = "Transpose"

    ELEMENTWISE_BINARY = (ADD, SUB, MUL, DIV, POW)
    ELEMENTWISE_UNARY = (
        CAST,
        DROPOUT,
        GELU,
        RELU,
        TANH,
        SIGMOID,
        ERF,
        NEG,
        SQRT,
        EXP,
        IDENTITY,
    )
