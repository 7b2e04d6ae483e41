# dpgs/core/data_structures.py
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from conllu.models import TokenList
from pydantic import BaseModel, ConfigDict, Field, model_validator

from dpgs.core.exceptions import MalformedInputError
from dpgs.core.tree_utils import NO_HEAD, is_valid_tree

FeatureCodes = Tuple[int, ...]


def check_heads(heads: Sequence[int], example_id: Optional[str] = None) -> None:
    """
    Проверяет эталонный массив родителей: индексы в диапазоне, без петель и циклов.
    """
    n = len(heads)
    for modifier, head in enumerate(heads):
        if head != NO_HEAD and not 0 <= head < n:
            raise MalformedInputError(f"Head {head} of token {modifier} is out of range for {n} tokens", example_id)
        if head == modifier:
            raise MalformedInputError(f"Token {modifier} is its own head", example_id)
    if not is_valid_tree(heads):
        raise MalformedInputError(f"Heads {list(heads)} do not form a tree", example_id)


def sibling_factor_keys(num_tokens: int, head: int) -> Iterator[Tuple[int, int, int]]:
    """
    Перебирает все допустимые ключи (head, modifier, previous) сиблинговых факторов.

    Левая цепочка: модификаторы 0..head-1, START/END = head.
    Правая цепочка: модификаторы head+1..n-1, START/END = n.
    """
    n = num_tokens
    for modifier in range(head + 1):
        yield head, modifier, head
        for previous in range(modifier):
            yield head, modifier, previous
    for modifier in range(head + 1, n + 1):
        yield head, modifier, n
        for previous in range(head + 1, modifier):
            yield head, modifier, previous


def _is_valid_sibling_key(num_tokens: int, head: int, modifier: int, previous: int) -> bool:
    n = num_tokens
    if not (0 <= head < n and 0 <= modifier <= n and 0 <= previous <= n):
        return False
    if modifier <= head:
        return previous == head or 0 <= previous < modifier
    return previous == n or head < previous < modifier


class DependencyInput(BaseModel):
    """
    Предложение с кодами признаков для каждого фактора.

    Ключ, отсутствующий в словаре, означает отсутствующий (отсеченный) фактор.
    Объект неизменяем и никогда не модифицируется выводом или моделью.
    """
    model_config = ConfigDict(frozen=True)

    num_tokens: int
    example_id: Optional[str] = None

    edges: Dict[Tuple[int, int], FeatureCodes] = Field(default_factory=dict)
    grandparents: Dict[Tuple[int, int, int], FeatureCodes] = Field(default_factory=dict)
    siblings: Dict[Tuple[int, int, int], FeatureCodes] = Field(default_factory=dict)

    @model_validator(mode='after')
    def check_factor_ranges(self):
        n = self.num_tokens
        if n < 1:
            raise MalformedInputError(f"Sentence must contain at least one token, got {n}", self.example_id)

        for head, modifier in self.edges:
            if not (0 <= head < n and 0 <= modifier < n) or head == modifier:
                raise MalformedInputError(
                    f"Invalid edge factor ({head}, {modifier}) for {n} tokens", self.example_id)

        for head, modifier, grandparent in self.grandparents:
            in_range = 0 <= head < n and 0 <= modifier < n and 0 <= grandparent < n
            if not in_range or modifier == head or grandparent == head:
                raise MalformedInputError(
                    f"Invalid grandparent factor ({head}, {modifier}, {grandparent}) for {n} tokens",
                    self.example_id)

        for head, modifier, previous in self.siblings:
            if not _is_valid_sibling_key(n, head, modifier, previous):
                raise MalformedInputError(
                    f"Invalid sibling factor ({head}, {modifier}, {previous}) for {n} tokens",
                    self.example_id)
        return self

    @property
    def size(self) -> int:
        return self.num_tokens

    def __len__(self) -> int:
        return self.num_tokens

    def edge_features(self, head: int, modifier: int) -> Optional[FeatureCodes]:
        return self.edges.get((head, modifier))

    def grandparent_features(self, head: int, modifier: int, grandparent: int) -> Optional[FeatureCodes]:
        return self.grandparents.get((head, modifier, grandparent))

    def sibling_features(self, head: int, modifier: int, previous: int) -> Optional[FeatureCodes]:
        return self.siblings.get((head, modifier, previous))

    @classmethod
    def from_dense(cls, edge_features: Sequence, grandparent_features: Sequence,
                   sibling_features: Sequence, example_id: Optional[str] = None) -> "DependencyInput":
        """
        Собирает вход из плотных массивов n×n, n×n×n и n×(n+1)×(n+1).
        None в ячейке означает отсутствующий фактор.
        """
        n = len(edge_features)
        if len(grandparent_features) != n or len(sibling_features) != n:
            raise MalformedInputError("Inconsistent sentence lengths in factor arrays", example_id)

        edges = {}
        for head, row in enumerate(edge_features):
            if len(row) != n:
                raise MalformedInputError(f"Edge row {head} has length {len(row)}, expected {n}", example_id)
            for modifier, codes in enumerate(row):
                if codes is not None:
                    edges[(head, modifier)] = tuple(codes)

        grandparents = {}
        for head, matrix in enumerate(grandparent_features):
            if len(matrix) != n or any(len(row) != n for row in matrix):
                raise MalformedInputError(f"Grandparent block {head} is not {n}x{n}", example_id)
            for modifier, row in enumerate(matrix):
                for grandparent, codes in enumerate(row):
                    if codes is not None:
                        grandparents[(head, modifier, grandparent)] = tuple(codes)

        siblings = {}
        for head, matrix in enumerate(sibling_features):
            if len(matrix) != n + 1 or any(len(row) != n + 1 for row in matrix):
                raise MalformedInputError(f"Sibling block {head} is not {n + 1}x{n + 1}", example_id)
            for modifier, row in enumerate(matrix):
                for previous, codes in enumerate(row):
                    if codes is not None:
                        siblings[(head, modifier, previous)] = tuple(codes)

        return cls(num_tokens=n, example_id=example_id,
                   edges=edges, grandparents=grandparents, siblings=siblings)


class DependencyOutput:
    """
    Предсказанное (или эталонное) дерево и структуры подзадачи grandparent/siblings.

    heads[m]          - родитель токена m в дереве (NO_HEAD для корня);
    grandparents[h]   - родитель, выбранный для вершины h ее подзадачей,
                        т.е. дед модификаторов h;
    modifiers[h][m]   - выбран ли m модификатором h.
    В согласованном состоянии grandparents[h] == heads[h] и
    modifiers[h][m] == (heads[m] == h).
    """

    def __init__(self, num_tokens: int):
        self.heads = np.full(num_tokens, NO_HEAD, dtype=np.int64)
        self.grandparents = np.full(num_tokens, NO_HEAD, dtype=np.int64)
        self.modifiers = np.zeros((num_tokens, num_tokens), dtype=bool)

    @property
    def size(self) -> int:
        return len(self.heads)

    def __len__(self) -> int:
        return len(self.heads)

    def __repr__(self) -> str:
        return f"DependencyOutput(heads={self.heads.tolist()})"

    def fill_gs_structures_from_parse(self) -> None:
        """Выводит grandparents и modifiers из heads."""
        self.grandparents[:] = self.heads
        self.modifiers[:] = False
        for modifier, head in enumerate(self.heads):
            if head != NO_HEAD:
                self.modifiers[head, modifier] = True

    def is_consistent(self) -> bool:
        expected = self.empty_like()
        expected.heads[:] = self.heads
        expected.fill_gs_structures_from_parse()
        return (np.array_equal(expected.grandparents, self.grandparents)
                and np.array_equal(expected.modifiers, self.modifiers))

    def empty_like(self) -> "DependencyOutput":
        return DependencyOutput(self.size)

    def copy(self) -> "DependencyOutput":
        other = self.empty_like()
        other.heads[:] = self.heads
        other.grandparents[:] = self.grandparents
        other.modifiers[:] = self.modifiers
        return other

    @classmethod
    def from_heads(cls, heads: Sequence[int], example_id: Optional[str] = None) -> "DependencyOutput":
        check_heads(heads, example_id)
        output = cls(len(heads))
        output.heads[:] = heads
        output.fill_gs_structures_from_parse()
        return output

    @classmethod
    def from_tokenlist(cls, sentence: TokenList) -> "DependencyOutput":
        """
        Эталонное дерево из предложения CoNLL-U.
        Индекс 0 - искусственный ROOT, токен с id=k получает индекс k.
        """
        example_id = sentence.metadata.get("sent_id") if sentence.metadata else None
        # Исключаем мульти-токены (1-2) и пустые узлы (1.1)
        tokens: List[dict] = [t for t in sentence if isinstance(t['id'], int)]
        ids = [t['id'] for t in tokens]
        if ids != list(range(1, len(tokens) + 1)):
            raise MalformedInputError(f"Token ids are not contiguous: {ids}", example_id)

        heads = [NO_HEAD]
        for t in tokens:
            if t['head'] is None:
                raise MalformedInputError(f"Token {t['id']} has no head", example_id)
            heads.append(t['head'])
        return cls.from_heads(heads, example_id)
