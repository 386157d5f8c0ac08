import pytest

from ldapmapper import validators as v


def test_not_empty():
    assert v.not_empty()('x') == 'x'
    assert v.not_empty()(0) == 0
    for value in (None, '', []):
        with pytest.raises(ValueError):
            v.not_empty()(value)


def test_each():
    assert v.each(v.is_integer())(['1', 2]) == (1, 2)
    with pytest.raises(TypeError):
        v.each(v.is_integer())(5)
    with pytest.raises(TypeError):
        v.each(v.is_string())('abc')


def test_is_integer():
    assert v.is_integer()('10') == 10
    for value in ('ten', None, False, 1.5j):
        with pytest.raises(ValueError):
            v.is_integer()(value)


def test_is_boolean():
    assert v.is_boolean()(False) is False
    with pytest.raises(ValueError):
        v.is_boolean()(0)


def test_is_list_and_mapping():
    assert v.is_list()(('a', )) == ['a']
    assert v.is_mapping()({ 'a' : 1 }) == { 'a' : 1 }
    with pytest.raises(ValueError):
        v.is_list()('a')
    with pytest.raises(ValueError):
        v.is_mapping()(['a'])


def test_optional_and_chain():
    validator = v.optional(v.chain(v.is_string(), v.not_empty()))
    assert validator(None) is None
    assert validator('x') == 'x'
    with pytest.raises(ValueError):
        validator('')
