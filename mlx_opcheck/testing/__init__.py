"""Operator verification toolkit.

- :mod:`~mlx_opcheck.testing.arrays`: synthetic arrays in every storage variant
- :mod:`~mlx_opcheck.testing.attrs`: operator descriptors
- :mod:`~mlx_opcheck.testing.verify`: verification predicates
- :mod:`~mlx_opcheck.testing.drivers`: write-mode and cross-dispatch drivers

Usage:
    from mlx_opcheck.testing import check_op, get_relu_op, verify_act_result

    check_op(get_relu_op(), verify_act_result)
"""

from mlx_opcheck.testing.arrays import (
    create_bias_ndarray,
    create_kernel_ndarray,
    get_test_array_shapes,
    get_test_input_arrays,
    get_test_output_arrays,
    init_default_array,
    print_verify_msg,
)
from mlx_opcheck.testing.attrs import (
    OpAttrs,
    get_concat_backwards_op,
    get_concat_op,
    get_conv_backward_op,
    get_conv_op,
    get_copy_backwards_op,
    get_copy_op,
    get_deconv_backward_op,
    get_deconv_op,
    get_fully_connected_backwards_op,
    get_fully_connected_op,
    get_lrn_backwards_op,
    get_lrn_op,
    get_pooling_backwards_op,
    get_pooling_op,
    get_relu_backwards_op,
    get_relu_op,
    get_sum_backwards_op,
    get_sum_op,
)
from mlx_opcheck.testing.drivers import (
    CrossDispatchCase,
    check_concat_op,
    check_conv_op,
    check_cross_dispatch,
    check_fully_connected_op,
    check_op,
    check_op_ex,
    check_pooling_op,
)
from mlx_opcheck.testing.verify import (
    Expectations,
    assert_equal,
    verify_act_backwards_result,
    verify_act_result,
    verify_add_request,
    verify_concat_backwards_result,
    verify_concat_result,
    verify_copy_result,
    verify_sum_backwards_result,
    verify_sum_result,
)

__all__ = [
    # Arrays
    "create_bias_ndarray",
    "create_kernel_ndarray",
    "get_test_array_shapes",
    "get_test_input_arrays",
    "get_test_output_arrays",
    "init_default_array",
    "print_verify_msg",
    # Operator descriptors
    "OpAttrs",
    "get_concat_backwards_op",
    "get_concat_op",
    "get_conv_backward_op",
    "get_conv_op",
    "get_copy_backwards_op",
    "get_copy_op",
    "get_deconv_backward_op",
    "get_deconv_op",
    "get_fully_connected_backwards_op",
    "get_fully_connected_op",
    "get_lrn_backwards_op",
    "get_lrn_op",
    "get_pooling_backwards_op",
    "get_pooling_op",
    "get_relu_backwards_op",
    "get_relu_op",
    "get_sum_backwards_op",
    "get_sum_op",
    # Drivers
    "CrossDispatchCase",
    "check_concat_op",
    "check_conv_op",
    "check_cross_dispatch",
    "check_fully_connected_op",
    "check_op",
    "check_op_ex",
    "check_pooling_op",
    # Verification
    "Expectations",
    "assert_equal",
    "verify_act_backwards_result",
    "verify_act_result",
    "verify_add_request",
    "verify_concat_backwards_result",
    "verify_concat_result",
    "verify_copy_result",
    "verify_sum_backwards_result",
    "verify_sum_result",
]
