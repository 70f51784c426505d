"""Drivers that push operators through the dispatcher and verify the results.

``check_op`` and ``check_concat_op`` exercise every requested write mode
against a reference predicate. The cross-dispatch drivers
(``check_op_ex``, ``check_fully_connected_op``, ``check_conv_op``,
``check_pooling_op``) run the same invocation through the generic and the
accelerated path and require the two to agree, forward and backward.

Every invocation is followed by ``Engine.get().wait_for_all()`` before any
result is read.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Sequence

from mlx_opcheck.constants import DispatchMode, OpReqType
from mlx_opcheck.context import Context
from mlx_opcheck.engine import Engine
from mlx_opcheck.imperative import Imperative
from mlx_opcheck.ndarray import NDArray, NDArrayAttrs
from mlx_opcheck.testing.arrays import (
    create_bias_ndarray,
    create_kernel_ndarray,
    get_test_input_arrays,
    get_test_output_arrays,
    init_default_array,
    print_verify_msg,
)
from mlx_opcheck.testing.attrs import OpAttrs
from mlx_opcheck.testing.verify import (
    Expectations,
    VerifyFunc,
    assert_equal,
    verify_add_request,
    verify_copy_result,
)
from mlx_opcheck.utils.shapes import (
    calculate_width_conv_output,
    calculate_width_deconv_output,
    calculate_width_pool_output,
    prod,
)


def _invoke(
    attrs: OpAttrs,
    inputs: Sequence[NDArray],
    outputs: Sequence[NDArray],
    req: OpReqType,
    dispatch: DispatchMode,
) -> None:
    Imperative.get().invoke_op(
        Context(), attrs.attrs, list(inputs), list(outputs), [req] * len(outputs), dispatch
    )


@contextmanager
def _training() -> Iterator[None]:
    imperative = Imperative.get()
    previous = imperative.set_is_training(True)
    try:
        yield
    finally:
        imperative.set_is_training(previous)


# =============================================================================
# Write-mode drivers
# =============================================================================


def check_op(attrs: OpAttrs, verify_fn: VerifyFunc) -> None:
    """Run ``attrs`` in every requested write mode and dispatch mode.

    WRITE_TO binds every input slot to the same test array and writes into
    fresh outputs of every variant. WRITE_INPLACE binds every input and
    output slot to one (non-view) array and verifies against a copy of its
    original content. ADD_TO verifies ``new_output - original_output``.
    """
    with Expectations():
        if OpReqType.WRITE_TO in attrs.requests:
            for in_arr in get_test_input_arrays():
                for dispatch in attrs.dispatches:
                    out_arrs = [
                        get_test_output_arrays(in_arr.arr.shape) for _ in range(attrs.num_outputs)
                    ]
                    inputs = [in_arr.arr] * attrs.num_inputs
                    for output_i in range(len(out_arrs[0])):
                        outputs = [out_arrs[i][output_i].arr for i in range(attrs.num_outputs)]
                        print_verify_msg(in_arr, out_arrs[0][output_i])
                        _invoke(attrs, inputs, outputs, OpReqType.WRITE_TO, dispatch)
                        Engine.get().wait_for_all()
                        verify_fn(inputs, outputs)

        if OpReqType.WRITE_INPLACE in attrs.requests:
            for dispatch in attrs.dispatches:
                for arr in get_test_input_arrays():
                    # Writing through a view would clobber its parent.
                    if arr.arr.is_view:
                        continue
                    orig = NDArrayAttrs(arr.arr.copy(), "InPlace Copy")
                    inputs = [arr.arr] * attrs.num_inputs
                    outputs = [arr.arr] * attrs.num_outputs
                    print_verify_msg(orig, arr)
                    _invoke(attrs, inputs, outputs, OpReqType.WRITE_INPLACE, dispatch)
                    Engine.get().wait_for_all()
                    verify_fn([orig.arr] * attrs.num_inputs, outputs)

        if OpReqType.ADD_TO in attrs.requests:
            for in_arr in get_test_input_arrays():
                for dispatch in attrs.dispatches:
                    out_arrs = [
                        get_test_output_arrays(in_arr.arr.shape) for _ in range(attrs.num_outputs)
                    ]
                    inputs = [in_arr.arr] * attrs.num_inputs
                    for output_i in range(len(out_arrs[0])):
                        outputs = [out_arrs[i][output_i].arr for i in range(attrs.num_outputs)]
                        original_outputs = [out.copy() for out in outputs]
                        print_verify_msg(in_arr, out_arrs[0][output_i])
                        _invoke(attrs, inputs, outputs, OpReqType.ADD_TO, dispatch)
                        Engine.get().wait_for_all()
                        verify_add_request(inputs, original_outputs, outputs, verify_fn)


def check_concat_op(attrs: OpAttrs, verify_fn: VerifyFunc, backwards: bool = False) -> None:
    """WRITE_TO check for ``concat`` (or ``_backward_Concat``).

    Forward outputs are the input shape scaled by ``num_args`` along ``dim``.
    Backward inputs are pre-scaled by ``num_args`` along ``dim`` and the
    outputs scaled back down. Inputs of rank ``<= dim`` are skipped.
    """
    dim = int(attrs.kwargs["dim"])
    if backwards:
        scale = [1.0] * (dim + 1)
        scale[dim] = attrs.num_outputs
        in_arrs = get_test_input_arrays(scale=scale)
    else:
        in_arrs = get_test_input_arrays()

    with Expectations():
        for in_arr in in_arrs:
            ndim = in_arr.arr.ndim
            if dim >= ndim:
                continue
            for dispatch in attrs.dispatches:
                factor = 1.0 / attrs.num_outputs if backwards else float(attrs.num_inputs)
                scale_vector = [1.0] * ndim
                scale_vector[dim] = factor
                out_arrs = [
                    get_test_output_arrays(in_arr.arr.shape, scale_vector)
                    for _ in range(attrs.num_outputs)
                ]
                inputs = [in_arr.arr] * attrs.num_inputs
                for output_i in range(len(out_arrs[0])):
                    outputs = [out_arrs[i][output_i].arr for i in range(attrs.num_outputs)]
                    print_verify_msg(in_arr, out_arrs[0][output_i])
                    _invoke(attrs, inputs, outputs, OpReqType.WRITE_TO, dispatch)
                    Engine.get().wait_for_all()
                    verify_fn(inputs, outputs)


# =============================================================================
# Cross-dispatch drivers
# =============================================================================


@dataclass
class CrossDispatchCase:
    """Arrays for one forward + backward comparison.

    The backward inputs typically alias the generic forward outputs, so
    they are only read after the forward pass has drained.
    """

    inputs: List[NDArray]
    outputs: List[NDArray]
    ex_outputs: List[NDArray]
    backward_inputs: List[NDArray]
    backward_outputs: List[NDArray]
    backward_ex_outputs: List[NDArray]
    in_desc: NDArrayAttrs
    out_desc: NDArrayAttrs
    backward_out_desc: NDArrayAttrs


def check_cross_dispatch(
    forward_attrs: OpAttrs,
    backward_attrs: OpAttrs,
    case: CrossDispatchCase,
    verify_fn: VerifyFunc = assert_equal,
) -> None:
    """Run one case through both paths and compare.

    The forward operator runs generic into ``case.outputs`` and accelerated
    into ``case.ex_outputs``; their primary outputs must agree. The backward
    operator then runs both ways on ``case.backward_inputs`` and every
    backward output must agree.
    """
    with _training():
        print_verify_msg(case.in_desc, case.out_desc)
        _invoke(forward_attrs, case.inputs, case.outputs, OpReqType.WRITE_TO, DispatchMode.GENERIC)
        _invoke(
            forward_attrs, case.inputs, case.ex_outputs, OpReqType.WRITE_TO, DispatchMode.ACCELERATED
        )
        Engine.get().wait_for_all()
        verify_fn(case.outputs[:1], case.ex_outputs[:1])

        print_verify_msg(case.out_desc, case.backward_out_desc, prefix="Backwards: ")
        _invoke(
            backward_attrs,
            case.backward_inputs,
            case.backward_outputs,
            OpReqType.WRITE_TO,
            DispatchMode.GENERIC,
        )
        _invoke(
            backward_attrs,
            case.backward_inputs,
            case.backward_ex_outputs,
            OpReqType.WRITE_TO,
            DispatchMode.ACCELERATED,
        )
        Engine.get().wait_for_all()
        verify_fn(case.backward_outputs, case.backward_ex_outputs)


def _output_sets(forward_attrs: OpAttrs, shape, scale, types=None):
    types = forward_attrs.output_types if types is None else types
    out_arrs = [get_test_output_arrays(shape, scale, types) for _ in range(forward_attrs.num_outputs)]
    ex_out_arrs = [
        get_test_output_arrays(shape, scale, types) for _ in range(forward_attrs.num_outputs)
    ]
    return out_arrs, ex_out_arrs


def check_op_ex(forward_attrs: OpAttrs, backward_attrs: OpAttrs) -> None:
    """Cross-dispatch check for LRN-style operators.

    The forward operator has outputs ``(out, tmp)``; the backward inputs are
    ``(out_grad=out, data, tmp)``. Only 4-D inputs are used, and outputs
    stored channels-last are skipped.
    """
    if OpReqType.WRITE_TO not in forward_attrs.requests:
        return
    in_arrs = get_test_input_arrays(forward_attrs.input_types, rand=True)
    for i1, in_arr in enumerate(in_arrs):
        if in_arr.arr.ndim != 4:
            continue
        out_arrs, ex_out_arrs = _output_sets(forward_attrs, in_arr.arr.shape, (1,))
        inputs = [in_arr.arr] * forward_attrs.num_inputs
        for output_i in range(len(out_arrs[0])):
            if out_arrs[0][output_i].arr.is_accelerated:
                continue
            outputs = [out_arrs[i][output_i].arr for i in range(forward_attrs.num_outputs)]
            ex_outputs = [ex_out_arrs[i][output_i].arr for i in range(forward_attrs.num_outputs)]
            tmp_output = get_test_input_arrays(forward_attrs.input_types, rand=True)[i1]
            tmp_output2 = get_test_input_arrays(forward_attrs.input_types, rand=True)[i1]
            case = CrossDispatchCase(
                inputs=inputs,
                outputs=outputs,
                ex_outputs=ex_outputs,
                backward_inputs=[outputs[0], in_arr.arr, outputs[1]],
                backward_outputs=[tmp_output.arr],
                backward_ex_outputs=[tmp_output2.arr],
                in_desc=in_arr,
                out_desc=out_arrs[0][output_i],
                backward_out_desc=tmp_output,
            )
            check_cross_dispatch(forward_attrs, backward_attrs, case)


def check_fully_connected_op(forward_attrs: OpAttrs, backward_attrs: OpAttrs) -> None:
    """Cross-dispatch check for FullyConnected with weight and bias inputs."""
    if OpReqType.WRITE_TO not in forward_attrs.requests:
        return
    num_hidden = int(forward_attrs.kwargs["num_hidden"])
    in_arrs = get_test_input_arrays(forward_attrs.input_types, rand=True)
    for i1, in_arr in enumerate(in_arrs):
        in_shape = in_arr.arr.shape
        if len(in_shape) < 2:
            continue
        wt_shape = (num_hidden, prod(in_shape[1:]))
        weights = NDArray(wt_shape)
        init_default_array(weights)
        bias_shape = (num_hidden,)
        bias = NDArray(bias_shape)
        init_default_array(bias)
        inputs = [in_arr.arr, weights, bias]

        out_shape = (in_shape[0], num_hidden)
        out_arrs, ex_out_arrs = _output_sets(forward_attrs, out_shape, (1,))
        for output_i in range(len(out_arrs[0])):
            outputs = [out_arrs[i][output_i].arr for i in range(forward_attrs.num_outputs)]
            ex_outputs = [ex_out_arrs[i][output_i].arr for i in range(forward_attrs.num_outputs)]
            tmp_output = get_test_input_arrays(forward_attrs.input_types, rand=True)[i1]
            tmp_output2 = get_test_input_arrays(forward_attrs.input_types, rand=True)[i1]
            case = CrossDispatchCase(
                inputs=inputs,
                outputs=outputs,
                ex_outputs=ex_outputs,
                backward_inputs=[outputs[0], in_arr.arr, weights],
                backward_outputs=[tmp_output.arr, NDArray(wt_shape), NDArray(bias_shape)],
                backward_ex_outputs=[tmp_output2.arr, NDArray(wt_shape), NDArray(bias_shape)],
                in_desc=in_arr,
                out_desc=out_arrs[0][output_i],
                backward_out_desc=tmp_output,
            )
            check_cross_dispatch(forward_attrs, backward_attrs, case)


def check_conv_op(forward_attrs: OpAttrs, backward_attrs: OpAttrs, is_deconv: bool = False) -> None:
    """Cross-dispatch check for Convolution (or Deconvolution).

    Inputs whose rank is not ``len(kernel) + 2`` are skipped. Backward inputs
    are ``(out_grad, data, weight[, bias])``.
    """
    params = forward_attrs.attrs.params()
    kernel, pads, strides = params.kernel, params.pads, params.strides
    num_filter = params.num_filter
    width = calculate_width_deconv_output if is_deconv else calculate_width_conv_output

    in_arrs = get_test_input_arrays(forward_attrs.input_types, True, (1,), True)
    for i1, in_arr in enumerate(in_arrs):
        input_shape = in_arr.arr.shape
        if len(input_shape) != len(kernel) + 2:
            continue

        scale_vector = [1.0, num_filter / input_shape[1]]
        for axis, (k, p, s) in enumerate(zip(kernel, pads, strides), start=2):
            scale_vector.append(width(input_shape[axis], k, p, s) / input_shape[axis])
        out_arrs, ex_out_arrs = _output_sets(forward_attrs, input_shape, scale_vector)

        ndkernel = create_kernel_ndarray(kernel, num_filter, input_shape, is_deconv)
        bias_shape = (num_filter,)
        ndbias = create_bias_ndarray(bias_shape)
        inputs = [in_arr.arr, ndkernel]
        if not params.no_bias:
            inputs.append(ndbias)

        for output_i in range(len(out_arrs[0])):
            outputs = [out_arrs[i][output_i].arr for i in range(forward_attrs.num_outputs)]
            ex_outputs = [ex_out_arrs[i][output_i].arr for i in range(forward_attrs.num_outputs)]

            backward_inputs = [outputs[0], in_arr.arr, ndkernel]
            if not params.no_bias:
                backward_inputs.append(ndbias)

            def grads():
                tmp = get_test_input_arrays(forward_attrs.input_types, True, (1,), True)[i1]
                arrs = [tmp.arr, create_kernel_ndarray(kernel, num_filter, input_shape, is_deconv)]
                if not params.no_bias:
                    arrs.append(create_bias_ndarray(bias_shape))
                return tmp, arrs

            tmp_output, backward_outputs = grads()
            _, backward_ex_outputs = grads()
            case = CrossDispatchCase(
                inputs=inputs,
                outputs=outputs,
                ex_outputs=ex_outputs,
                backward_inputs=backward_inputs,
                backward_outputs=backward_outputs,
                backward_ex_outputs=backward_ex_outputs,
                in_desc=in_arr,
                out_desc=out_arrs[0][output_i],
                backward_out_desc=tmp_output,
            )
            check_cross_dispatch(forward_attrs, backward_attrs, case)


def check_pooling_op(
    forward_attrs: OpAttrs,
    backward_attrs: OpAttrs,
    verify_fn: VerifyFunc = verify_copy_result,
) -> None:
    """Cross-dispatch check for Pooling.

    Views and inputs whose rank is not ``len(kernel) + 2`` are skipped. With
    a workspace the backward inputs are ``(out_grad, workspace_grad, data,
    out, workspace)``, the workspace taken from the accelerated forward
    pass; otherwise ``(out_grad, data, out)``.

    Integer-filled inputs make max pooling exact on both paths, so results
    are compared with ``verify_copy_result`` unless ``verify_fn`` says
    otherwise.
    """
    params = forward_attrs.attrs.params()
    kernel, pads, strides = params.kernel, params.pads, params.strides

    in_arrs = get_test_input_arrays()
    for i1, in_arr in enumerate(in_arrs):
        input_shape = in_arr.arr.shape
        if len(input_shape) != len(kernel) + 2:
            continue
        if in_arr.arr.is_view:
            continue

        scale_vector = [1.0, 1.0]
        for axis, (k, p, s) in enumerate(zip(kernel, pads, strides), start=2):
            out_width = calculate_width_pool_output(input_shape[axis], k, p, s)
            scale_vector.append(out_width / input_shape[axis])
        out_arrs, ex_out_arrs = _output_sets(
            forward_attrs, input_shape, scale_vector, forward_attrs.output_types
        )
        inputs = [in_arr.arr] * forward_attrs.num_inputs

        for output_i in range(len(out_arrs[0])):
            outputs = [out_arrs[i][output_i].arr for i in range(forward_attrs.num_outputs)]
            ex_outputs = [ex_out_arrs[i][output_i].arr for i in range(forward_attrs.num_outputs)]
            if backward_attrs.num_inputs == 5:
                backward_inputs = [outputs[0], outputs[0], inputs[0], outputs[0], ex_outputs[1]]
            else:
                backward_inputs = [outputs[0], inputs[0], outputs[0]]

            tmp_output = get_test_input_arrays()[i1]
            tmp_output2 = get_test_input_arrays()[i1]
            case = CrossDispatchCase(
                inputs=inputs,
                outputs=outputs,
                ex_outputs=ex_outputs,
                backward_inputs=backward_inputs,
                backward_outputs=[tmp_output.arr],
                backward_ex_outputs=[tmp_output2.arr],
                in_desc=in_arr,
                out_desc=out_arrs[0][output_i],
                backward_out_desc=tmp_output,
            )
            check_cross_dispatch(forward_attrs, backward_attrs, case, verify_fn)
