class AveragedParameter:
    """
    Вес признака с ленивым усреднением (averaged perceptron).

    Обновление сразу меняет текущий вес; часть, еще не учтенная в сумме,
    хранится в pending до вызова sum(iteration).
    """
    __slots__ = ("weight", "pending", "total", "last_summed_iteration")

    def __init__(self, weight: float = 0.0):
        self.weight = weight
        self.pending = 0.0
        self.total = 0.0
        self.last_summed_iteration = -1

    def __repr__(self) -> str:
        return f"AveragedParameter(weight={self.weight}, total={self.total})"

    def set(self, value: float) -> None:
        self.weight = value
        self.pending = 0.0
        self.total = 0.0
        self.last_summed_iteration = -1

    def update(self, value: float) -> None:
        self.weight += value
        self.pending += value

    def sum(self, iteration: int) -> None:
        # Вес до обновлений держался с last_summed_iteration + 1 по iteration - 1 включительно
        self.total += (self.weight - self.pending) * (iteration - self.last_summed_iteration) + self.pending
        self.pending = 0.0
        self.last_summed_iteration = iteration

    def average(self, num_iterations: int) -> None:
        self.sum(num_iterations - 1)
        self.weight = self.total / num_iterations
        # Сумма остается согласованной с усредненным весом за все num_iterations итераций
        self.total = self.weight * num_iterations
