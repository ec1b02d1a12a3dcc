import hypothesis
import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st
from numpy.testing import assert_array_equal

from lazy_hdf5.errors import ConfigurationError, OutOfBoundsError
from lazy_hdf5.slicetools import (
    UNLIMITED,
    SliceND,
    ViewTransform,
    index_to_slice_nd,
    normalize_chunks,
    normalize_maxshape,
    normalize_shape,
)

max_examples = 1_000


def test_normalize_shape():
    assert normalize_shape(3) == (3,)
    assert normalize_shape([2, np.int64(3)]) == (2, 3)
    assert normalize_shape(()) == ()
    with pytest.raises(ConfigurationError):
        normalize_shape((2, -1))
    with pytest.raises(ConfigurationError):
        normalize_shape("foo")


def test_normalize_maxshape():
    assert normalize_maxshape(None, (2, 3)) == (2, 3)
    assert normalize_maxshape((None, 5), (2, 3)) == (UNLIMITED, 5)
    assert normalize_maxshape(4, (2,)) == (4,)
    with pytest.raises(ConfigurationError, match="Dimensions"):
        normalize_maxshape((5,), (2, 3))
    with pytest.raises(ConfigurationError, match="smaller"):
        normalize_maxshape((2, 2), (2, 3))


def test_normalize_chunks():
    assert normalize_chunks(None, (2, 3)) is None
    assert normalize_chunks([1, 3], (2, 3)) == (1, 3)
    # Chunks may be larger than the shape
    assert normalize_chunks(10, (2,)) == (10,)
    with pytest.raises(ConfigurationError, match="Dimensions"):
        normalize_chunks((1,), (2, 3))
    with pytest.raises(ConfigurationError, match="positive"):
        normalize_chunks((0, 1), (2, 3))


def test_slice_nd_defaults():
    s = SliceND((4, 5))
    assert s.start == (0, 0)
    assert s.stop == (4, 5)
    assert s.step == (1, 1)
    assert s.shape == (4, 5)
    assert s.size == 20
    assert s.source_shape == (4, 5)
    assert not s.is_expanded
    assert s.raw == (slice(0, 4, 1), slice(0, 5, 1))


def test_slice_nd_negative():
    s = SliceND((10,), start=-3, stop=-1)
    assert s.start == (7,)
    assert s.stop == (9,)
    assert s.shape == (2,)

    with pytest.raises(OutOfBoundsError):
        SliceND((10,), start=-11)


def test_slice_nd_step():
    s = SliceND((10,), start=1, stop=10, step=4)
    # stop is shrunk to the element after the last one selected
    assert s.stop == (10,)
    assert s.shape == (3,)
    s = SliceND((10,), start=1, stop=8, step=4)
    assert s.stop == (6,)
    assert s.shape == (2,)
    assert_array_equal(np.arange(10)[s.raw], np.arange(10)[1:8:4])

    with pytest.raises(IndexError):
        SliceND((10,), step=0)
    with pytest.raises(IndexError):
        SliceND((10,), step=-1)


def test_slice_nd_empty():
    s = SliceND((10,), start=5, stop=2)
    assert s.shape == (0,)
    assert s.stop == (5,)
    assert not s.is_expanded
    # Empty selections never expand, even past maxshape
    s = SliceND((10,), (10,), start=20, stop=20)
    assert s.shape == (0,)
    assert s.source_shape == (10,)


def test_slice_nd_expanded():
    s = SliceND((2, 3), (2, 10), start=(0, 2), stop=(2, 6))
    assert s.shape == (2, 4)
    assert s.source_shape == (2, 6)
    assert s.is_expanded
    assert repr(s) == "SliceND[0:2, 2:6] of (2, 3) -> (2, 6)"

    s = SliceND((2, 3), (None, 3), start=(100, 0), stop=(101, 3))
    assert s.source_shape == (101, 3)


def test_slice_nd_out_of_bounds():
    with pytest.raises(OutOfBoundsError):
        SliceND((2, 3), (2, 10), start=(0, 2), stop=(2, 11))
    # maxshape defaults to the shape
    with pytest.raises(OutOfBoundsError):
        SliceND((2, 3), stop=(2, 4))


def test_slice_nd_rank_mismatch():
    with pytest.raises(IndexError):
        SliceND((2, 3), start=(0,))
    with pytest.raises(ConfigurationError):
        SliceND((2, 3), (2,))


def test_slice_nd_eq():
    assert SliceND((4,), start=1) == SliceND((4,), start=(1,), stop=(4,), step=(1,))
    assert SliceND((4,), start=1, stop=3, step=2) == SliceND(
        (4,), start=1, stop=2, step=2
    )
    assert SliceND((4,), start=1) != SliceND((4,), start=2)
    assert len({SliceND((4,)), SliceND((4,), stop=4)}) == 1


def test_index_to_slice_nd():
    s, int_axes = index_to_slice_nd((1, slice(None, None, 2)), (3, 4))
    assert s.start == (1, 0)
    assert s.stop == (2, 3)
    assert s.step == (1, 2)
    assert int_axes == (0,)

    s, int_axes = index_to_slice_nd((..., -1), (3, 4))
    assert s.start == (0, 3)
    assert s.stop == (3, 4)
    assert int_axes == (1,)

    s, int_axes = index_to_slice_nd((), (3, 4))
    assert s == SliceND((3, 4))
    assert int_axes == ()

    s, int_axes = index_to_slice_nd(slice(1, None), (3, 4))
    assert s.shape == (2, 4)


def test_index_to_slice_nd_growth():
    s, _ = index_to_slice_nd(slice(2, 6), (3,), (None,))
    assert s.source_shape == (6,)
    s, int_axes = index_to_slice_nd(5, (3,), (None,))
    assert s.source_shape == (6,)
    assert int_axes == (0,)
    with pytest.raises(OutOfBoundsError):
        index_to_slice_nd(slice(2, 6), (3,), (4,))


def test_index_to_slice_nd_clamp():
    s, _ = index_to_slice_nd(slice(2, 6), (3,), clamp=True)
    assert s.shape == (1,)
    assert not s.is_expanded
    with pytest.raises(OutOfBoundsError):
        index_to_slice_nd(3, (3,), clamp=True)
    with pytest.raises(OutOfBoundsError):
        index_to_slice_nd(-4, (3,), clamp=True)


def test_index_to_slice_nd_unsupported():
    with pytest.raises(NotImplementedError):
        index_to_slice_nd([0, 1], (3,))
    with pytest.raises(NotImplementedError):
        index_to_slice_nd(np.array([True, False, True]), (3,))
    with pytest.raises(NotImplementedError):
        index_to_slice_nd(np.newaxis, (3,))
    with pytest.raises(IndexError):
        index_to_slice_nd(slice(None, None, -1), (3,))
    with pytest.raises(IndexError):
        index_to_slice_nd((0, 0), (3,))


def test_view_transform_slice():
    t = ViewTransform.identity((2, 3))
    assert t.is_identity
    assert not t.is_transposed

    t = t.slice(SliceND((2, 3), start=(0, 1), stop=(2, 3)))
    assert t.shape == (2, 2)
    assert not t.is_identity
    true = t.apply(SliceND(t.shape), (2, 3))
    assert true.start == (0, 1)
    assert true.stop == (2, 3)

    with pytest.raises(OutOfBoundsError):
        t.slice(SliceND((2, 3)))
    with pytest.raises(OutOfBoundsError):
        t.apply(SliceND((2, 2), (2, 5), stop=(2, 5)), (2, 3))


def test_view_transform_transpose():
    a = np.arange(24).reshape(2, 3, 4)
    t = ViewTransform.identity(a.shape).transpose()
    assert t.shape == (4, 3, 2)
    assert t.is_transposed
    assert_array_equal(t.to_local_order(a), a.T)
    assert_array_equal(t.to_source_order(a.T), a)

    t = ViewTransform.identity(a.shape).transpose((0, 2, 1))
    assert t.shape == (2, 4, 3)
    assert_array_equal(t.to_local_order(a), a.transpose(0, 2, 1))

    with pytest.raises(ValueError):
        ViewTransform.identity(a.shape).transpose((0, 1))
    with pytest.raises(ValueError):
        ViewTransform.identity(a.shape).transpose((0, 1, 1))


@st.composite
def view_chain_st(draw, max_ndim: int = 3, max_size: int = 6):
    """Random shape followed by a chain of slicing and transposing actions"""
    shape = tuple(
        draw(st.lists(st.integers(0, max_size), min_size=1, max_size=max_ndim))
    )
    n_actions = draw(st.integers(0, 4))
    cur = shape
    actions = []
    for _ in range(n_actions):
        if draw(st.booleans()):
            axes = tuple(draw(st.permutations(range(len(cur)))))
            actions.append(("transpose", axes))
            cur = tuple(cur[i] for i in axes)
        else:
            start = []
            stop = []
            step = []
            for n in cur:
                b = draw(st.integers(0, n))
                e = draw(st.integers(b, n))
                start.append(b)
                stop.append(e)
                step.append(draw(st.integers(1, 3)))
            actions.append(("slice", (start, stop, step)))
            cur = SliceND(cur, None, start, stop, step).shape
    return shape, actions


@pytest.mark.slow
@given(view_chain_st())
@hypothesis.settings(max_examples=max_examples, deadline=None)
def test_view_transform_composition(args):
    """Composing transforms must select the same elements as chaining numpy
    views.
    """
    shape, actions = args
    a = np.arange(int(np.prod(shape))).reshape(shape)
    expect = a
    t = ViewTransform.identity(shape)
    for label, arg in actions:
        if label == "transpose":
            expect = expect.transpose(arg)
            t = t.transpose(arg)
        else:
            start, stop, step = arg
            expect = expect[tuple(slice(*s) for s in zip(start, stop, step))]
            t = t.slice(SliceND(t.shape, None, start, stop, step))

    assert t.shape == expect.shape
    true = t.apply(SliceND(t.shape), shape)
    assert not true.is_expanded
    assert_array_equal(t.to_local_order(a[true.raw]), expect)
